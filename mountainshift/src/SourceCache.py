"""Last-known-good price cache.

Holds the most recent successfully fetched :class:`Price` per source and pair.
The resilient fetch wrapper writes to it on every successful fetch and reads
from it when a source fails. Entries never expire: a stale value is preferred
over no fallback, and the key space is bounded by the configured sources and
routes.

One instance is constructed at service start and handed to every
:class:`ResilientFetcher`; tests construct their own.

.. code-block:: python

    >>> cache = SourceCache()
    >>> cache.set("okx", "arb", "usd", Price(Decimal("0.42"), "okx"))
    >>> cache.get("okx", "arb", "usd").value
    Decimal('0.42')
"""

import logging
import time

from .Price import Price

logger = logging.getLogger(__name__)


class SourceCache:
    """Mapping from (source, base, quote) to the last successful Price.

    Writes are single-key replacements; concurrent writers resolve as last
    write wins.
    """

    def __init__(self) -> None:
        """Initialize an empty cache."""
        self._prices: dict[str, Price] = {}

    @staticmethod
    def key(source: str, base: str, quote: str) -> str:
        """Build the cache key for a source and pair (e.g., ``okx/arb/usd``)."""
        return f"{source}/{base.lower()}/{quote.lower()}"

    def set(self, source: str, base: str, quote: str, price: Price) -> None:
        """Store the latest successful price.

        :param source: Source identifier.
        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :param price: Freshly fetched price.
        """
        self._prices[self.key(source, base, quote)] = price
        logger.debug(f"[{source}] cached {base}/{quote} = {price.value}")

    def get(self, source: str, base: str, quote: str) -> Price | None:
        """Get the last successful price, however old.

        :returns: Cached price, or None if the source never succeeded.
        """
        return self._prices.get(self.key(source, base, quote))

    def get_age(self, source: str, base: str, quote: str) -> float | None:
        """Get the age of a cached price in seconds.

        :returns: Age in seconds, or None if nothing is cached.
        """
        price = self.get(source, base, quote)
        if price is None:
            return None
        return time.time() - price.fetched_at

    def clear(self) -> None:
        """Drop all entries."""
        self._prices.clear()

    def __len__(self) -> int:
        return len(self._prices)
