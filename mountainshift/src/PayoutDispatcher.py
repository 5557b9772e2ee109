"""PayoutDispatcher: send the settled amount from the payout wallet.

The wallet balance is checked before anything is broadcast; a transfer is
then signed locally (sign-and-send middleware on the chain's Web3 instance),
broadcast, and awaited until its receipt is available.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from web3 import Web3
from web3.exceptions import Web3Exception

from .ContractUtility import ContractUtility
from .SwapRoute import TokenSpec
from .errors import (
    InputError,
    InsufficientFundsError,
    PayoutNotSentError,
    TransferFailedError,
)

logger = logging.getLogger(__name__)

DEFAULT_RECEIPT_TIMEOUT = 120.0


@dataclass(frozen=True)
class TransferReceipt:
    """A confirmed payout transfer.

    :ivar tx_hash: Payout transaction hash.
    :ivar chain: Payout chain.
    :ivar destination: Recipient address.
    :ivar asset: Asset symbol.
    :ivar amount_units: Amount sent in base units.
    :ivar amount: Amount sent in decimal units.
    :ivar block_number: Block the transfer was included in.
    """

    tx_hash: str
    chain: str
    destination: str
    asset: str
    amount_units: int
    amount: Decimal
    block_number: int | None = None


class PayoutDispatcher:
    """Executes payouts on one chain.

    :ivar contracts: Contract utility holding the signing Web3 instance.
    :ivar receipt_timeout: Seconds to wait for the payout receipt.
    """

    def __init__(
        self,
        contracts: ContractUtility,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
    ) -> None:
        """Initialize the dispatcher.

        :param contracts: Contract utility for the payout chain (with a key to pay out).
        :param receipt_timeout: Seconds to wait for confirmation.
        """
        self.contracts = contracts
        self.receipt_timeout = receipt_timeout

    @property
    def chain(self) -> str:
        return self.contracts.chain

    @property
    def w3(self) -> Web3:
        return self.contracts.w3

    def get_balance(self, asset: TokenSpec, address: str | None = None) -> int:
        """Get the balance of an address in base units.

        :param asset: Asset to query.
        :param address: Address (default: the payout wallet).
        :returns: Balance in base units.
        :raises ValueError: If no address is given and no wallet is configured.
        """
        address = address or self.contracts.address
        if not address:
            raise ValueError(f"[{self.chain}] no address given and no payout wallet")
        address = Web3.to_checksum_address(address)
        if asset.is_native:
            return int(self.w3.eth.get_balance(address))
        return int(self.contracts.erc20(asset.address).functions.balanceOf(address).call())

    def dispatch_payout(
        self, destination: str, amount: Decimal, asset: TokenSpec
    ) -> TransferReceipt:
        """Send ``amount`` of ``asset`` to ``destination``.

        :param destination: Recipient address.
        :param amount: Amount in decimal units (rounded down to base units).
        :param asset: Payout asset.
        :returns: Receipt of the confirmed transfer.
        :raises InputError: If the amount rounds down to zero base units.
        :raises PayoutNotSentError: If no wallet is configured or its balance
            cannot be read.
        :raises InsufficientFundsError: If the payout wallet cannot cover the amount.
        :raises TransferFailedError: If broadcasting or confirmation fails.
        """
        sender = self.contracts.address
        if not sender:
            raise PayoutNotSentError(f"[{self.chain}] payout wallet not configured")

        units = asset.to_units(amount)
        if units <= 0:
            raise InputError(f"payout amount {amount} {asset.symbol} rounds to zero")

        destination = Web3.to_checksum_address(destination)
        try:
            balance = self.get_balance(asset, sender)
        except (Web3Exception, OSError, ValueError) as e:
            raise PayoutNotSentError(
                f"[{self.chain}] payout wallet balance unreadable: {e}"
            ) from e
        logger.info(
            f"[{self.chain}] {asset.symbol} balance of payout wallet: "
            f"{asset.from_units(balance)}"
        )
        if balance < units:
            raise InsufficientFundsError(
                f"Insufficient {asset.symbol} in payout wallet: required "
                f"{asset.from_units(units)}, available {asset.from_units(balance)}",
                required=units,
                available=balance,
            )

        try:
            if asset.is_native:
                tx_hash = self.w3.eth.send_transaction(
                    {"from": sender, "to": destination, "value": units}
                )
            else:
                token = self.contracts.erc20(asset.address)
                tx_hash = token.functions.transfer(destination, units).transact(
                    {"from": sender}
                )
        except (Web3Exception, OSError, ValueError) as e:
            raise TransferFailedError(f"[{self.chain}] payout broadcast failed: {e}") from e

        tx_hex = Web3.to_hex(tx_hash)
        logger.info(
            f"[{self.chain}] Sent {asset.from_units(units)} {asset.symbol} to "
            f"{destination}: {tx_hex}"
        )

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except (Web3Exception, OSError, ValueError) as e:
            raise TransferFailedError(
                f"[{self.chain}] payout {tx_hex} not confirmed: {e}"
            ) from e

        if receipt.get("status") != 1:
            raise TransferFailedError(f"[{self.chain}] payout {tx_hex} reverted")

        return TransferReceipt(
            tx_hash=tx_hex,
            chain=self.chain,
            destination=destination,
            asset=asset.symbol,
            amount_units=units,
            amount=asset.from_units(units),
            block_number=receipt.get("blockNumber"),
        )
