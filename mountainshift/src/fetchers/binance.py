"""Binance spot ticker.

``GET https://api.binance.com/api/v3/ticker/price?symbol=ARBUSDC`` returns
``{"symbol": "ARBUSDC", "price": "0.42310000"}``. Binance lists no fiat USD
books, so a ``usd`` quote reads the USDC book with USDC taken at par.
"""

from typing import Any

from .base import BaseFetcher, canonical_symbol, register_fetcher


@register_fetcher
class BinanceFetcher(BaseFetcher):
    """Binance public ticker; no key needed."""

    name = "binance"
    BASE_URL = "https://api.binance.com/api/v3"

    # Fiat quote -> stablecoin book
    STABLE_QUOTES = {"usd": "USDC"}

    @classmethod
    def market(cls, base: str, quote: str) -> str:
        """Binance symbol for a pair, e.g. ``ARBUSDC``."""
        quote = canonical_symbol(quote)
        return canonical_symbol(base).upper() + cls.STABLE_QUOTES.get(quote, quote.upper())

    async def fetch_raw(self, base: str, quote: str) -> Any:
        ticker = await self._get_json(
            f"{self.BASE_URL}/ticker/price", params={"symbol": self.market(base, quote)}
        )
        return ticker["price"]
