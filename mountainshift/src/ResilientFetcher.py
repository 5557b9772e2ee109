"""ResilientFetcher: price fetching with last-known-good fallback.

Every adapter call is bounded by ``fetch_timeout``. A fresh value is written
to the :class:`SourceCache`; a failed call is answered from the cache, then
from a caller-supplied fallback, and only then surfaces as
:class:`PriceSourceError`.

Fan-out over several sources is concurrent: all calls are issued at once and
joined before the caller aggregates them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .Price import Price, PriceQuoteResult
from .SourceCache import SourceCache
from .SwapRoute import DEFAULT_FETCH_TIMEOUT
from .errors import PriceSourceError

if TYPE_CHECKING:
    from .fetchers import BaseFetcher

logger = logging.getLogger(__name__)


class ResilientFetcher:
    """Wraps price adapters with a timeout and a last-known-good cache.

    :ivar cache: Shared last-known-good cache.
    :ivar fetch_timeout: Per-call timeout in seconds.
    """

    def __init__(
        self,
        cache: SourceCache | None = None,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
    ) -> None:
        """Initialize the wrapper.

        :param cache: Cache to read and write (default: a new private cache).
        :param fetch_timeout: Per-call timeout in seconds; must be positive.
        :raises ValueError: If the timeout is not positive.
        """
        if fetch_timeout is None or fetch_timeout <= 0:
            raise ValueError(f"fetch_timeout must be positive, got {fetch_timeout}")
        self.cache = cache if cache is not None else SourceCache()
        self.fetch_timeout = fetch_timeout

    async def _fetch_once(
        self, fetcher: BaseFetcher, base: str, quote: str
    ) -> PriceQuoteResult:
        """Call the adapter once, converting timeouts and stray errors to failures."""
        try:
            return await asyncio.wait_for(
                fetcher.fetch(base, quote),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            return PriceQuoteResult.failed(
                fetcher.name, f"timeout after {self.fetch_timeout}s"
            )
        except Exception as e:
            logger.warning(f"[{fetcher.name}] Error fetching {base}/{quote}: {e}")
            return PriceQuoteResult.failed(fetcher.name, f"unexpected error: {e}")

    async def fetch_with_fallback(
        self,
        fetcher: BaseFetcher,
        base: str,
        quote: str,
        fallback: Price | None = None,
    ) -> Price:
        """Fetch a price, substituting the last known value on failure.

        :param fetcher: Price adapter.
        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :param fallback: Price to use when the source fails and nothing is cached.
        :returns: Fresh price, cached price (unchanged) or the fallback.
        :raises PriceSourceError: If the source failed with no cache and no fallback.
        """
        source = fetcher.name
        result = await self._fetch_once(fetcher, base, quote)

        if result.ok:
            self.cache.set(source, base, quote, result.price)
            return result.price

        cached = self.cache.get(source, base, quote)
        if cached is not None:
            logger.warning(
                f"[{source}] {result.reason}; using last known {base}/{quote} "
                f"= {cached.value}"
            )
            return cached

        if fallback is not None:
            logger.warning(
                f"[{source}] {result.reason}; using fallback {base}/{quote} "
                f"= {fallback.value}"
            )
            return fallback

        raise PriceSourceError(source, result.reason or "unknown failure")

    async def fetch_all(
        self,
        fetchers: Iterable[BaseFetcher],
        base: str,
        quote: str,
    ) -> list[PriceQuoteResult]:
        """Fetch a pair from all sources concurrently.

        :param fetchers: Price adapters to query.
        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :returns: One result per adapter, in input order; sources with neither
            a fresh nor a cached value are failed results.
        """
        fetchers = list(fetchers)
        if not fetchers:
            return []

        outcomes = await asyncio.gather(
            *(self.fetch_with_fallback(f, base, quote) for f in fetchers),
            return_exceptions=True,
        )

        results: list[PriceQuoteResult] = []
        for fetcher, outcome in zip(fetchers, outcomes, strict=True):
            if isinstance(outcome, PriceSourceError):
                results.append(PriceQuoteResult.failed(fetcher.name, outcome.reason))
            elif isinstance(outcome, BaseException):
                logger.warning(f"[{fetcher.name}] Fetch exception: {outcome}")
                results.append(PriceQuoteResult.failed(fetcher.name, str(outcome)))
            else:
                results.append(PriceQuoteResult.success(outcome))

        ok = sum(1 for r in results if r.ok)
        logger.debug(f"Fetched {base}/{quote}: {ok}/{len(results)} sources usable")
        return results
