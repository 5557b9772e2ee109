"""CoinGecko simple price.

``GET /api/v3/simple/price?ids=arbitrum&vs_currencies=usd`` returns
``{"arbitrum": {"usd": 0.4231}}``. CoinGecko addresses coins by id, not by
ticker, so only coins in :attr:`CoinGeckoFetcher.COIN_IDS` are priced.

Keys are optional. A pro key is passed as is and switches to the pro host; a
demo key is passed with a ``demo:`` prefix (``API_KEY_COINGECKO=demo:CG-xxx``)
and stays on the public host.
"""

from typing import Any

from .base import BaseFetcher, FetcherError, canonical_symbol, register_fetcher

PUBLIC_URL = "https://api.coingecko.com/api/v3"
PRO_URL = "https://pro-api.coingecko.com/api/v3"
DEMO_PREFIX = "demo:"


@register_fetcher
class CoinGeckoFetcher(BaseFetcher):
    """CoinGecko adapter.

    :ivar demo: True when the key is a demo key.
    """

    name = "coingecko"

    COIN_IDS = {
        "arb": "arbitrum",
        "btc": "bitcoin",
        "eth": "ethereum",
        "usdc": "usd-coin",
        "usdt": "tether",
    }

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        self.demo = bool(api_key) and api_key.lower().startswith(DEMO_PREFIX)
        if self.demo:
            api_key = api_key[len(DEMO_PREFIX):]
        super().__init__(api_key=api_key, timeout=timeout)

    @property
    def base_url(self) -> str:
        return PRO_URL if self.has_api_key and not self.demo else PUBLIC_URL

    def _auth_headers(self) -> dict | None:
        if not self.has_api_key:
            return None
        return {f"x-cg-{'demo' if self.demo else 'pro'}-api-key": self.api_key}

    async def supports_pair(self, base: str, quote: str) -> bool:
        return canonical_symbol(base) in self.COIN_IDS

    async def fetch_raw(self, base: str, quote: str) -> Any:
        coin_id = self.COIN_IDS[canonical_symbol(base)]
        currency = canonical_symbol(quote)
        prices = await self._get_json(
            f"{self.base_url}/simple/price",
            params={"ids": coin_id, "vs_currencies": currency},
            headers=self._auth_headers(),
        )
        if currency not in prices.get(coin_id, {}):
            raise FetcherError(f"No {currency} price for {coin_id} in {prices}")
        return prices[coin_id][currency]
