"""CoinMarketCap latest quotes (key required).

``GET https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest
?symbol=ARB&convert=USD`` with header ``X-CMC_PRO_API_KEY``; the price is
``data.ARB.quote.USD.price``. Some plans answer with a list of coins per
symbol; the first (highest ranked) one is used.
"""

from typing import Any

from .base import BaseFetcher, FetcherError, canonical_symbol, register_fetcher


@register_fetcher
class CoinMarketCapFetcher(BaseFetcher):
    name = "coinmarketcap"
    URL = "https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest"

    async def fetch_raw(self, base: str, quote: str) -> Any:
        if not self.has_api_key:
            raise FetcherError("API key required but not provided")

        symbol = canonical_symbol(base).upper()
        convert = canonical_symbol(quote).upper()
        body = await self._get_json(
            self.URL,
            params={"symbol": symbol, "convert": convert},
            headers={"X-CMC_PRO_API_KEY": self.api_key},
        )
        coin = (body.get("data") or {}).get(symbol)
        if not coin:
            raise FetcherError(f"Symbol {symbol} not found: {body.get('status')}")
        if isinstance(coin, list):
            coin = coin[0]
        return coin["quote"][convert]["price"]
