"""Coinbase Exchange product ticker.

``GET https://api.exchange.coinbase.com/products/ETH-USD/ticker``; the last
trade sits in ``price``. Coinbase lists native USD books.
"""

from typing import Any

from .base import BaseFetcher, canonical_symbol, register_fetcher


@register_fetcher
class CoinbaseFetcher(BaseFetcher):
    name = "coinbase"
    BASE_URL = "https://api.exchange.coinbase.com"

    async def fetch_raw(self, base: str, quote: str) -> Any:
        product = f"{canonical_symbol(base)}-{canonical_symbol(quote)}".upper()
        ticker = await self._get_json(f"{self.BASE_URL}/products/{product}/ticker")
        return ticker["price"]
