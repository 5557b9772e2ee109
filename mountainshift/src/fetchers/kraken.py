"""Kraken public ticker.

``GET https://api.kraken.com/0/public/Ticker?pair=XBTUSD``. Kraken calls
bitcoin ``XBT`` and keys the result by its own pair name (``XXBTZUSD``), so
the single entry of ``result`` is read whatever its key. ``c`` holds the last
closed trade as ``[price, volume]``.
"""

from typing import Any

from .base import BaseFetcher, FetcherError, canonical_symbol, register_fetcher


@register_fetcher
class KrakenFetcher(BaseFetcher):
    name = "kraken"
    BASE_URL = "https://api.kraken.com/0/public"

    ASSET_CODES = {"btc": "XBT"}

    def pair_code(self, base: str, quote: str) -> str:
        base, quote = canonical_symbol(base), canonical_symbol(quote)
        return self.ASSET_CODES.get(base, base.upper()) + self.ASSET_CODES.get(quote, quote.upper())

    async def fetch_raw(self, base: str, quote: str) -> Any:
        pair = self.pair_code(base, quote)
        body = await self._get_json(f"{self.BASE_URL}/Ticker", params={"pair": pair})
        if body.get("error"):
            raise FetcherError(f"API error for {pair}: {', '.join(body['error'])}")
        tickers = body.get("result") or {}
        if len(tickers) != 1:
            raise FetcherError(f"Expected one ticker for {pair}, got {len(tickers)}")
        (ticker,) = tickers.values()
        return ticker["c"][0]
