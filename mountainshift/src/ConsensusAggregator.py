"""ConsensusAggregator: bottom-trimmed mean over independent price quotes.

Algorithm:
    1. Keep quotes tagged ok; failed quotes are dropped by tag, never by value
    2. Fail with InsufficientDataError if fewer than min_sources remain
    3. Sort ascending and drop the lowest floor(n * trim_fraction) quotes
    4. Fail with AllValuesTrimmedError if nothing remains
    5. Return the exact Decimal mean of the remainder (sum, then divide)

The trim is one-sided on purpose: coarse-tick feeds sit high, so spurious,
stale or manipulated quotes show up at the low end.

.. code-block:: python

    >>> prices = [Price(Decimal(v), s) for v, s in [(1, "a"), (2, "b"), (3, "c"), (4, "d")]]
    >>> rate = compute_consensus(prices, Decimal("0.25"))
    >>> rate.price.value, rate.used_count, rate.discarded_count
    (Decimal('3'), 3, 1)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, localcontext

from .Price import Price, PriceQuoteResult, to_decimal
from .SwapRoute import DEFAULT_MIN_SOURCES
from .errors import AllValuesTrimmedError, InsufficientDataError

logger = logging.getLogger(__name__)

# Working precision for the mean; far above any feed's significant digits
CONSENSUS_PRECISION = 50

CONSENSUS_SOURCE = "consensus"


@dataclass(frozen=True)
class ConsensusRate:
    """Result of a consensus computation.

    :ivar price: The trimmed mean, tagged with source ``consensus``.
    :ivar used_count: Number of quotes averaged.
    :ivar discarded_count: Number of low quotes trimmed.
    :ivar sources: (source, value) of each quote averaged, ascending.
    :ivar dropped: (source, value) of each trimmed quote, ascending.
    """

    price: Price
    used_count: int
    discarded_count: int
    sources: tuple[tuple[str, Decimal], ...] = ()
    dropped: tuple[tuple[str, Decimal], ...] = ()

    @property
    def value(self) -> Decimal:
        """The consensus rate."""
        return self.price.value


def _valid_prices(prices: Iterable[Price | PriceQuoteResult]) -> list[Price]:
    valid: list[Price] = []
    for item in prices:
        if isinstance(item, PriceQuoteResult):
            if not item.ok:
                continue
            item = item.price
        valid.append(item)
    return valid


def compute_consensus(
    prices: Iterable[Price | PriceQuoteResult],
    trim_fraction: Decimal | float | str,
    min_sources: int = DEFAULT_MIN_SOURCES,
) -> ConsensusRate:
    """Compute the bottom-trimmed mean of a set of quotes.

    :param prices: Prices, or adapter results (failed results are skipped).
    :param trim_fraction: Fraction in [0, 1] of the lowest quotes to drop.
    :param min_sources: Minimum number of valid quotes required.
    :returns: Consensus rate with used/discarded counts.
    :raises ValueError: If trim_fraction is outside [0, 1].
    :raises InsufficientDataError: If fewer than ``min_sources`` valid quotes.
    :raises AllValuesTrimmedError: If the trim removes every quote.
    """
    fraction = to_decimal(trim_fraction)
    if fraction < 0 or fraction > 1:
        raise ValueError(f"trim_fraction must be in [0, 1], got {trim_fraction}")

    valid = _valid_prices(prices)
    n = len(valid)
    if n == 0 or n < min_sources:
        raise InsufficientDataError(n, max(min_sources, 1))

    ordered = sorted(valid, key=lambda p: p.value)
    trim_count = int((Decimal(n) * fraction).to_integral_value(ROUND_FLOOR))
    if trim_count >= n:
        raise AllValuesTrimmedError(
            f"all values trimmed: trim count {trim_count} >= {n} values"
        )

    dropped = ordered[:trim_count]
    kept = ordered[trim_count:]

    with localcontext() as ctx:
        ctx.prec = CONSENSUS_PRECISION
        mean = sum((p.value for p in kept), Decimal(0)) / len(kept)

    rate = ConsensusRate(
        price=Price(mean, CONSENSUS_SOURCE),
        used_count=len(kept),
        discarded_count=len(dropped),
        sources=tuple((p.source, p.value) for p in kept),
        dropped=tuple((p.source, p.value) for p in dropped),
    )

    breakdown = ", ".join(str(p) for p in kept)
    logger.info(f"Consensus {mean} from {len(kept)} quotes ({breakdown})")
    if dropped:
        logger.info(f"Trimmed low quotes: {', '.join(str(p) for p in dropped)}")
    return rate


class ConsensusAggregator:
    """Reusable consensus configuration.

    :ivar min_sources: Minimum valid quotes required.
    :ivar trim_fraction: Fraction of lowest quotes dropped.

    .. code-block:: python

        >>> agg = ConsensusAggregator(trim_fraction=Decimal("0.26"))
        >>> agg.aggregate(quotes).value
    """

    def __init__(
        self,
        trim_fraction: Decimal | float | str,
        min_sources: int = DEFAULT_MIN_SOURCES,
    ) -> None:
        """Initialize the aggregator.

        :param trim_fraction: Fraction in [0, 1] of the lowest quotes to drop.
        :param min_sources: Minimum number of valid quotes required.
        :raises ValueError: If parameters are invalid.
        """
        if min_sources < 1:
            raise ValueError("min_sources must be at least 1")
        fraction = to_decimal(trim_fraction)
        if fraction < 0 or fraction > 1:
            raise ValueError(f"trim_fraction must be in [0, 1], got {trim_fraction}")

        self.trim_fraction = fraction
        self.min_sources = min_sources

    def aggregate(self, prices: Iterable[Price | PriceQuoteResult]) -> ConsensusRate:
        """Aggregate quotes into a consensus rate.

        :param prices: Prices or adapter results.
        :returns: Consensus rate.
        """
        return compute_consensus(prices, self.trim_fraction, self.min_sources)
