"""Chainlink price feeds on Arbitrum One.

Reads ``latestRoundData()`` and ``decimals()`` from an AggregatorV3 proxy; the
price is ``answer / 10**decimals``. The calls block, so they run in a worker
thread.
"""

import asyncio
from decimal import Decimal
from typing import Any

from web3 import Web3
from web3.exceptions import Web3Exception

from .base import BaseFetcher, FetcherError, canonical_symbol, register_fetcher
from ..ContractUtility import AGGREGATOR_V3_ABI, ContractUtility


@register_fetcher
class ChainlinkFetcher(BaseFetcher):
    """On-chain feed reader.

    :ivar w3: Web3 instance for the feed chain, connected on first use.
    """

    name = "chainlink"
    CHAIN = "arbitrum"

    # (base, quote) -> AggregatorV3 proxy
    FEEDS = {
        ("arb", "usd"): "0xb2A824043730FE05F3DA2efaFa1CBbe83fa548D6",
        ("btc", "usd"): "0x6ce185860a4963106506C203335A2910413708e9",
        ("eth", "usd"): "0x639Fe6ab55C921f74e7fac1ee960C0B6293ba612",
    }

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        w3: Web3 | None = None,
    ):
        """Initialize the reader.

        :param api_key: Unused; accepted so the registry can build every adapter alike.
        :param timeout: Unused; the caller bounds the read.
        :param w3: Web3 instance (default: connect to the chain's RPC on first use).
        """
        super().__init__(api_key=api_key, timeout=timeout)
        self.w3 = w3

    def feed_address(self, base: str, quote: str) -> str | None:
        return self.FEEDS.get((canonical_symbol(base), canonical_symbol(quote)))

    async def supports_pair(self, base: str, quote: str) -> bool:
        return self.feed_address(base, quote) is not None

    def _latest_answer(self, feed: str) -> tuple[int, int]:
        if self.w3 is None:
            self.w3 = ContractUtility(self.CHAIN).w3
        aggregator = self.w3.eth.contract(
            address=Web3.to_checksum_address(feed), abi=AGGREGATOR_V3_ABI
        )
        _round_id, answer, _started, _updated, _answered = (
            aggregator.functions.latestRoundData().call()
        )
        return answer, aggregator.functions.decimals().call()

    async def fetch_raw(self, base: str, quote: str) -> Any:
        feed = self.feed_address(base, quote)
        try:
            answer, decimals = await asyncio.to_thread(self._latest_answer, feed)
        except (Web3Exception, OSError) as e:
            raise FetcherError(f"Feed {feed} unreadable: {e}") from e
        if answer <= 0:
            raise FetcherError(f"Feed {feed} answered {answer}")
        return Decimal(answer).scaleb(-decimals)
