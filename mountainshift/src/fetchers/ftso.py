"""Flare FTSO feeds through a consumer contract on Coston2.

``fetchAllFeeds()`` returns parallel arrays of bytes32 feed names (e.g.
``testARB``), prices and timestamps. Prices carry 18 decimals and share one
scale, so a USD price is the ratio of the base feed to the ``testUSDC`` feed.

The consumer address comes from ``FTSO_CONSUMER_ADDRESS``; the RPC from
``COSTON2_RPC_URL`` (or the public endpoint).
"""

import asyncio
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from web3 import Web3
from web3.exceptions import Web3Exception

from .base import BaseFetcher, FetcherError, canonical_symbol, register_fetcher
from ..ContractUtility import FTSO_CONSUMER_ABI, ContractUtility

FEED_PREFIX = "test"
USD_FEED = "testUSDC"
FEED_DECIMALS = 18

# Feeds reported by the listing, in display order
LISTED_FEEDS = (
    "C2FLR",
    "testXRP",
    "testLTC",
    "testXLM",
    "testDOGE",
    "testADA",
    "testALGO",
    "testBTC",
    "testETH",
    "testFIL",
    "testARB",
    "testAVAX",
    "testBNB",
    "testMATIC",
    "testSOL",
    "testUSDC",
    "testUSDT",
    "testXDC",
    "testPOL",
)


def parse_bytes32(raw: bytes) -> str:
    """Decode a NUL-padded bytes32 feed name."""
    return bytes(raw).rstrip(b"\x00").decode("utf-8", errors="replace")


@dataclass(frozen=True)
class FeedPrice:
    """One row of the feed listing.

    :ivar symbol: Feed name (e.g., "testBTC").
    :ivar price: Price in decimal units, zero when the feed is missing.
    :ivar timestamp: Feed update time in unix seconds, zero when missing.
    :ivar found: Whether the consumer reported the feed.
    """

    symbol: str
    price: Decimal
    timestamp: int
    found: bool


@register_fetcher
class FtsoFetcher(BaseFetcher):
    """FTSO consumer reader.

    :ivar consumer_address: Consumer contract, or None when unconfigured.
    :ivar w3: Web3 instance for Coston2, connected on first use.
    """

    name = "ftso"
    CHAIN = "coston2"

    USD_QUOTES = {"usd", "usdc"}

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        w3: Web3 | None = None,
        consumer_address: str | None = None,
    ):
        super().__init__(api_key=api_key, timeout=timeout)
        self.w3 = w3
        self.consumer_address = consumer_address or os.environ.get("FTSO_CONSUMER_ADDRESS")

    async def supports_pair(self, base: str, quote: str) -> bool:
        return canonical_symbol(quote) in self.USD_QUOTES

    def _read_feeds(self) -> list[tuple[str, int, int]]:
        if self.w3 is None:
            self.w3 = ContractUtility(self.CHAIN).w3
        consumer = self.w3.eth.contract(
            address=Web3.to_checksum_address(self.consumer_address),
            abi=FTSO_CONSUMER_ABI,
        )
        names, prices, timestamps = consumer.functions.fetchAllFeeds().call()
        return list(zip(map(parse_bytes32, names), prices, timestamps))

    async def all_feeds(self) -> list[tuple[str, int, int]]:
        """Read every feed as ``(name, raw price, timestamp)``.

        :raises FetcherError: If the consumer is unconfigured or unreadable.
        """
        if not self.consumer_address:
            raise FetcherError("FTSO_CONSUMER_ADDRESS not configured")
        try:
            return await asyncio.to_thread(self._read_feeds)
        except (Web3Exception, OSError) as e:
            raise FetcherError(f"Consumer {self.consumer_address} unreadable: {e}") from e

    async def list_feeds(self, symbols=LISTED_FEEDS) -> tuple[list[FeedPrice], list[str]]:
        """Price every requested feed.

        Requested feeds the consumer does not report are listed with
        ``found=False`` so callers see what was asked for.

        :param symbols: Feed names, in output order.
        :returns: The listing, and every feed name the consumer reported.
        :raises FetcherError: If the consumer is unconfigured or unreadable.
        """
        feeds = await self.all_feeds()
        by_name = {name: (price, ts) for name, price, ts in feeds}
        listing = []
        for symbol in symbols:
            if symbol not in by_name:
                listing.append(FeedPrice(symbol, Decimal(0), 0, False))
                continue
            price, ts = by_name[symbol]
            listing.append(
                FeedPrice(
                    symbol,
                    Decimal(price).scaleb(-FEED_DECIMALS).normalize(),
                    int(ts),
                    True,
                )
            )
        return listing, [name for name, _, _ in feeds]

    async def fetch_raw(self, base: str, quote: str) -> Any:
        prices = {name: price for name, price, _ in await self.all_feeds()}
        feed = FEED_PREFIX + canonical_symbol(base).upper()
        for name in (feed, USD_FEED):
            if not prices.get(name):
                raise FetcherError(f"Feed {name} missing from consumer")
        return Decimal(prices[feed]) / Decimal(prices[USD_FEED])
