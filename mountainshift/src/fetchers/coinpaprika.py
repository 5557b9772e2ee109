"""Coinpaprika ticker.

``GET https://api.coinpaprika.com/v1/tickers/arb-arbitrum``; the price is
``quotes.USD.price``. Coin ids have the form ``{symbol}-{name}``.
"""

from typing import Any

from .base import BaseFetcher, FetcherError, canonical_symbol, register_fetcher


@register_fetcher
class CoinpaprikaFetcher(BaseFetcher):
    name = "coinpaprika"
    BASE_URL = "https://api.coinpaprika.com/v1"

    COIN_IDS = {
        "arb": "arb-arbitrum",
        "btc": "btc-bitcoin",
        "eth": "eth-ethereum",
        "usdc": "usdc-usd-coin",
        "usdt": "usdt-tether",
    }

    async def supports_pair(self, base: str, quote: str) -> bool:
        return canonical_symbol(base) in self.COIN_IDS

    async def fetch_raw(self, base: str, quote: str) -> Any:
        coin_id = self.COIN_IDS[canonical_symbol(base)]
        ticker = await self._get_json(f"{self.BASE_URL}/tickers/{coin_id}")
        if "error" in ticker:
            raise FetcherError(f"API error for {coin_id}: {ticker['error']}")
        return ticker["quotes"][canonical_symbol(quote).upper()]["price"]
