"""OKX market ticker.

``GET https://www.okx.com/api/v5/market/ticker?instId=ARB-USDT``. OKX reports
API errors with HTTP 200 and a non-zero ``code``; the last trade price is
``data[0].last``. There are no fiat USD instruments, so ``usd`` reads USDT.
"""

from typing import Any

from .base import BaseFetcher, FetcherError, canonical_symbol, register_fetcher


@register_fetcher
class OKXFetcher(BaseFetcher):
    """OKX public ticker; no key needed."""

    name = "okx"
    BASE_URL = "https://www.okx.com/api/v5"

    STABLE_QUOTES = {"usd": "USDT"}

    @classmethod
    def instrument(cls, base: str, quote: str) -> str:
        """OKX instrument id for a pair, e.g. ``ARB-USDT``."""
        quote = canonical_symbol(quote)
        return f"{canonical_symbol(base).upper()}-{cls.STABLE_QUOTES.get(quote, quote.upper())}"

    async def fetch_raw(self, base: str, quote: str) -> Any:
        inst_id = self.instrument(base, quote)
        body = await self._get_json(
            f"{self.BASE_URL}/market/ticker", params={"instId": inst_id}
        )
        if str(body.get("code", "0")) != "0":
            raise FetcherError(f"API error {body.get('code')} for {inst_id}: {body.get('msg')}")
        if not body.get("data"):
            raise FetcherError(f"No ticker for {inst_id}")
        return body["data"][0]["last"]
