"""Price value types shared by the adapters, the fetch wrapper and the aggregator.

A :class:`Price` is an exact ``Decimal`` quantity tagged with the source that
produced it and the time it was fetched. A :class:`PriceQuoteResult` is the
outcome of one adapter call: either ok (carrying a Price) or failed (carrying
a reason). Failure is a tag, never a numeric sentinel.

.. code-block:: python

    >>> ok = PriceQuoteResult.success(Price(Decimal("1.25"), "coingecko"))
    >>> ok.ok, ok.price.value
    (True, Decimal('1.25'))
    >>> PriceQuoteResult.from_legacy("okx", -1).reason
    'invalid legacy price: -1'
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any


def to_decimal(value: Any) -> Decimal:
    """Convert a JSON/RPC numeric value to ``Decimal`` without float drift.

    Floats are converted through ``str`` so ``0.1`` becomes ``Decimal("0.1")``.

    :param value: int, str, float or Decimal.
    :returns: Finite Decimal value.
    :raises ValueError: If the value is missing, boolean, non-numeric or not finite.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"not a numeric value: {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"not a numeric value: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"not a finite value: {value!r}")
    return result


def is_invalid_price(value: Any) -> bool:
    """Check whether a legacy price value denotes a failed fetch.

    Legacy callers signal failure with ``-1``, ``NaN`` or ``None``; a zero or
    negative value is never a usable exchange rate either.

    :param value: Raw legacy value.
    :returns: True if the value must be treated as a failure.
    """
    try:
        return to_decimal(value) <= 0
    except ValueError:
        return True


@dataclass(frozen=True)
class Price:
    """Exchange rate observed from a single source.

    :ivar value: Unit exchange rate.
    :ivar source: Source identifier (e.g., "coingecko").
    :ivar fetched_at: Unix timestamp of the fetch.
    """

    value: Decimal
    source: str
    fetched_at: float = field(default_factory=time.time)

    def __str__(self) -> str:
        """Return a log-friendly representation like ``coingecko=$1.2345``."""
        return f"{self.source}=${self.value}"


@dataclass(frozen=True)
class PriceQuoteResult:
    """Outcome of one adapter invocation.

    :ivar source: Source identifier.
    :ivar price: Price on success, None on failure.
    :ivar reason: Failure reason, None on success.
    """

    source: str
    price: Price | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        """Check if the fetch succeeded."""
        return self.price is not None

    @classmethod
    def success(cls, price: Price) -> PriceQuoteResult:
        """Build a successful result.

        :param price: Fetched price.
        :returns: Ok result for ``price.source``.
        """
        return cls(source=price.source, price=price)

    @classmethod
    def failed(cls, source: str, reason: str) -> PriceQuoteResult:
        """Build a failed result.

        :param source: Source identifier.
        :param reason: Human-readable failure reason.
        :returns: Failed result.
        """
        return cls(source=source, reason=reason)

    @classmethod
    def from_legacy(cls, source: str, value: Any) -> PriceQuoteResult:
        """Convert a legacy sentinel-style value into a tagged result.

        :param source: Source identifier.
        :param value: Raw value (``-1``/``NaN``/``None`` signal failure).
        :returns: Failed result for invalid values, ok result otherwise.
        """
        if is_invalid_price(value):
            return cls.failed(source, f"invalid legacy price: {value}")
        return cls.success(Price(to_decimal(value), source))
