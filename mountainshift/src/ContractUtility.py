"""ContractUtility: Web3 initialization, payout signing and minimal contract ABIs."""

import logging
import os

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder

logger = logging.getLogger(__name__)

# Public RPC endpoints, overridable with <CHAIN>_RPC_URL
DEFAULT_RPC_URLS = {
    "arbitrum": "https://arb1.arbitrum.io/rpc",
    "ethereum": "https://ethereum-rpc.publicnode.com",
    "optimism": "https://mainnet.optimism.io",
    "rootstock": "https://public-node.rsk.co",
    "coston2": "https://coston2-api.flare.network/ext/C/rpc",
}

ERC20_ABI = [
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]

AGGREGATOR_V3_ABI = [
    {
        "name": "latestRoundData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]

FTSO_CONSUMER_ABI = [
    {
        "name": "fetchAllFeeds",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "symbols", "type": "bytes32[]"},
            {"name": "prices", "type": "uint256[]"},
            {"name": "timestamps", "type": "uint256[]"},
        ],
    },
]


def rpc_url_for(chain: str) -> str:
    """Resolve the RPC URL of a chain.

    ``<CHAIN>_RPC_URL`` overrides the public default.

    :param chain: Chain name (e.g., "arbitrum").
    :returns: RPC URL.
    :raises ValueError: If the chain is unknown and no env override is set.
    """
    url = os.environ.get(f"{chain.upper()}_RPC_URL") or DEFAULT_RPC_URLS.get(chain)
    if not url:
        raise ValueError(f"No RPC URL configured for chain '{chain}'")
    return url


class ContractUtility:
    """Utility for Web3 connection and contract access on one chain.

    :ivar chain: Chain name.
    :ivar network: RPC URL.
    :ivar w3: Web3 instance; signs locally when a private key is configured.
    :ivar account: Payout account, or None for read-only access.
    """

    def __init__(
        self,
        chain: str,
        private_key: str | None = None,
        w3: Web3 | None = None,
    ) -> None:
        """Initialize the contract utility.

        :param chain: Chain name (e.g., "arbitrum", "rootstock").
        :param private_key: Optional payout key; without one the utility is read-only.
        :param w3: Optional preconfigured Web3 instance (tests, custom providers).
        """
        self.chain = chain
        self.account: LocalAccount | None = None

        if w3 is None:
            self.network = rpc_url_for(chain)
            w3 = Web3(Web3.HTTPProvider(self.network))
        else:
            self.network = None
        self.w3 = w3

        if private_key:
            self.account = Account.from_key(private_key)
            self.w3.middleware_onion.add(
                SignAndSendRawMiddlewareBuilder.build(self.account)
            )
            self.w3.eth.default_account = self.account.address
            logger.info(f"[{chain}] Payout account: {self.account.address}")

    @property
    def address(self) -> str | None:
        """Address of the payout account, if one is configured."""
        return self.account.address if self.account else None

    def erc20(self, token_address: str):
        """Bind the minimal ERC-20 ABI to a token address."""
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(token_address), abi=ERC20_ABI
        )

    def contract(self, address: str, abi: list):
        """Bind an arbitrary ABI to an address."""
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
