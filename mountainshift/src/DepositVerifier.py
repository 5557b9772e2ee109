"""DepositVerifier: confirm a deposit transaction on-chain.

A deposit is accepted only when its transaction is mined, did not revert, and
moved the expected asset to the expected deposit address. Three strategies
locate the deposit; a route lists the ones it accepts and they are tried in
that order, first success wins:

    deposit_event  DepositProcessed(uint256 amount, address indexed depositor,
                   address indexed recipient, bytes proof) emitted by the
                   deposit contract
    transfer       ERC-20 Transfer(address indexed from, address indexed to,
                   uint256 value) from the token contract to the deposit address
    native         the transaction itself sends native value to the deposit address

Within a strategy, logs are scanned in receipt order and the first structural
match is accepted.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import Web3
from web3.exceptions import TransactionNotFound

from .SwapRoute import TokenSpec, VerificationStrategy
from .errors import (
    EventNotFoundError,
    TransferNotFoundError,
    TxNotFoundError,
    TxNotMinedError,
    TxRevertedError,
    VerificationError,
)

logger = logging.getLogger(__name__)

TRANSFER_TOPIC = bytes(Web3.keccak(text="Transfer(address,address,uint256)"))
DEPOSIT_PROCESSED_TOPIC = bytes(
    Web3.keccak(text="DepositProcessed(uint256,address,address,bytes)")
)


@dataclass(frozen=True)
class DepositEvent:
    """A verified deposit.

    :ivar chain: Deposit chain.
    :ivar tx_hash: Deposit transaction hash (lowercase, 0x-prefixed).
    :ivar depositor: Address the funds came from.
    :ivar recipient: Deposit address or contract that received them.
    :ivar asset: Deposited asset symbol.
    :ivar amount_units: Amount in base units.
    :ivar amount: Amount in decimal units.
    :ivar strategy: Strategy that located the deposit.
    :ivar proof: Raw proof bytes from DepositProcessed (not validated).
    """

    chain: str
    tx_hash: str
    depositor: str
    recipient: str
    asset: str
    amount_units: int
    amount: Decimal
    strategy: VerificationStrategy
    proof: bytes = b""


def _as_bytes(value: Any) -> bytes:
    """Normalize HexBytes / bytes / hex strings to bytes."""
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return bytes(value)


def _topic_address(topic: Any) -> str:
    """Extract the address held in the low 20 bytes of an indexed topic."""
    return Web3.to_checksum_address("0x" + _as_bytes(topic)[-20:].hex())


def _same_address(a: str | None, b: str | None) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


def normalize_tx_hash(tx_hash: str) -> str:
    """Lowercase, 0x-prefixed transaction hash."""
    tx_hash = tx_hash.strip().lower()
    return tx_hash if tx_hash.startswith("0x") else f"0x{tx_hash}"


class DepositVerifier:
    """Verifies deposits on one chain.

    :ivar chain: Chain name.
    :ivar w3: Web3 instance for the chain.
    """

    def __init__(self, chain: str, w3: Web3) -> None:
        """Initialize the verifier.

        :param chain: Chain name.
        :param w3: Web3 instance connected to the chain.
        """
        self.chain = chain
        self.w3 = w3

    def get_receipt(self, tx_hash: str) -> Any:
        """Fetch a mined, successful receipt.

        :raises TxNotFoundError: If the node has no receipt for the hash.
        :raises TxNotMinedError: If the receipt has no block yet.
        :raises TxRevertedError: If the transaction reverted.
        """
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound as e:
            raise TxNotFoundError(f"txn not found: {tx_hash}") from e
        if receipt is None:
            raise TxNotFoundError(f"txn not found: {tx_hash}")
        if receipt.get("blockNumber") is None:
            raise TxNotMinedError(f"txn not mined yet: {tx_hash}")
        if receipt.get("status") == 0:
            raise TxRevertedError(f"txn reverted: {tx_hash}")
        return receipt

    def _from_deposit_event(
        self, tx_hash: str, receipt: Any, deposit_address: str, asset: TokenSpec
    ) -> DepositEvent:
        for log in receipt.get("logs", []):
            topics = log.get("topics") or []
            if len(topics) < 3 or _as_bytes(topics[0]) != DEPOSIT_PROCESSED_TOPIC:
                continue
            if not _same_address(log.get("address"), deposit_address):
                continue
            try:
                amount_units, proof = decode(["uint256", "bytes"], _as_bytes(log["data"]))
            except DecodingError as e:
                logger.debug(f"[{self.chain}] Undecodable DepositProcessed log: {e}")
                continue
            return DepositEvent(
                chain=self.chain,
                tx_hash=tx_hash,
                depositor=_topic_address(topics[1]),
                recipient=_topic_address(topics[2]),
                asset=asset.symbol,
                amount_units=amount_units,
                amount=asset.from_units(amount_units),
                strategy=VerificationStrategy.DEPOSIT_EVENT,
                proof=bytes(proof),
            )
        raise EventNotFoundError(
            f"DepositProcessed event from {deposit_address} not found in {tx_hash}"
        )

    def _from_transfer(
        self, tx_hash: str, receipt: Any, deposit_address: str, asset: TokenSpec
    ) -> DepositEvent:
        if asset.is_native:
            raise TransferNotFoundError(f"{asset.symbol} is native; no token transfer")
        for log in receipt.get("logs", []):
            topics = log.get("topics") or []
            if len(topics) != 3 or _as_bytes(topics[0]) != TRANSFER_TOPIC:
                continue
            if not _same_address(log.get("address"), asset.address):
                continue
            to = _topic_address(topics[2])
            if not _same_address(to, deposit_address):
                continue
            try:
                (amount_units,) = decode(["uint256"], _as_bytes(log["data"]))
            except DecodingError as e:
                logger.debug(f"[{self.chain}] Undecodable Transfer log: {e}")
                continue
            return DepositEvent(
                chain=self.chain,
                tx_hash=tx_hash,
                depositor=_topic_address(topics[1]),
                recipient=to,
                asset=asset.symbol,
                amount_units=amount_units,
                amount=asset.from_units(amount_units),
                strategy=VerificationStrategy.TRANSFER,
            )
        raise TransferNotFoundError(
            f"{asset.symbol} token transfer to deposit address {deposit_address} "
            f"not found in {tx_hash}"
        )

    def _from_native(
        self, tx_hash: str, receipt: Any, deposit_address: str, asset: TokenSpec
    ) -> DepositEvent:
        try:
            tx = self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound as e:
            raise TxNotFoundError(f"transaction not found: {tx_hash}") from e
        if tx is None:
            raise TxNotFoundError(f"transaction not found: {tx_hash}")
        if not _same_address(tx.get("to"), deposit_address):
            raise TransferNotFoundError(
                f"{asset.symbol} transfer to deposit address {deposit_address} not "
                f"found in {tx_hash} (sent to {tx.get('to')})"
            )
        value = int(tx.get("value") or 0)
        if value <= 0:
            raise TransferNotFoundError(f"{tx_hash} carries no {asset.symbol} value")
        return DepositEvent(
            chain=self.chain,
            tx_hash=tx_hash,
            depositor=tx.get("from"),
            recipient=tx.get("to"),
            asset=asset.symbol,
            amount_units=value,
            amount=asset.from_units(value),
            strategy=VerificationStrategy.NATIVE,
        )

    def verify_deposit(
        self,
        tx_hash: str,
        deposit_address: str,
        asset: TokenSpec,
        strategies: Sequence[VerificationStrategy] = (
            VerificationStrategy.DEPOSIT_EVENT,
            VerificationStrategy.TRANSFER,
        ),
    ) -> DepositEvent:
        """Verify a deposit transaction.

        :param tx_hash: Deposit transaction hash.
        :param deposit_address: Address that must have received the deposit.
        :param asset: Expected deposited asset.
        :param strategies: Strategies to try, in order.
        :returns: The verified deposit.
        :raises TxNotFoundError: If the transaction does not exist.
        :raises TxNotMinedError: If it is not mined yet.
        :raises TxRevertedError: If it reverted.
        :raises VerificationError: The last strategy's error if none matched.
        """
        if not strategies:
            raise ValueError("at least one verification strategy is required")

        tx_hash = normalize_tx_hash(tx_hash)
        receipt = self.get_receipt(tx_hash)
        logger.info(
            f"[{self.chain}] Receipt for {tx_hash} in block {receipt.get('blockNumber')}"
        )

        handlers = {
            VerificationStrategy.DEPOSIT_EVENT: self._from_deposit_event,
            VerificationStrategy.TRANSFER: self._from_transfer,
            VerificationStrategy.NATIVE: self._from_native,
        }
        last_error: VerificationError | None = None
        for strategy in strategies:
            strategy = VerificationStrategy(strategy)
            try:
                event = handlers[strategy](
                    tx_hash, receipt, deposit_address, asset
                )
            except (EventNotFoundError, TransferNotFoundError) as e:
                logger.debug(f"[{self.chain}] {strategy.value}: {e}")
                last_error = e
                continue
            logger.info(
                f"[{self.chain}] Deposit of {event.amount} {event.asset} from "
                f"{event.depositor} verified via {event.strategy.value}"
            )
            return event

        raise last_error
