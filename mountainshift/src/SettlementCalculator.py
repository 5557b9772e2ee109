"""SettlementCalculator: reconcile the backend rate with the user's estimate.

The payout is ``min(computed, user_predicted) * (1 - fee_rate)`` where
``computed`` converts the verified deposit at the consensus rate. The user
cannot inflate the payout because the computed estimate caps it, and a backend
price anomaly cannot shortchange the user below their own client-side quote.

.. code-block:: python

    >>> d = compute_settlement(Decimal(100), Decimal(2), "60", Decimal("0.01"), RateDirection.DIVIDE)
    >>> d.computed_estimate, d.chosen_amount, d.final_amount
    (Decimal('50'), Decimal('50'), Decimal('49.50'))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Any

from .Price import to_decimal
from .SwapRoute import DEFAULT_FEE_RATE, RateDirection, TokenSpec
from .errors import InputError, InvalidPredictionError

logger = logging.getLogger(__name__)

SETTLEMENT_PRECISION = 50


@dataclass(frozen=True)
class SettlementDecision:
    """Outcome of the settlement computation.

    :ivar deposited_amount: Verified deposit amount.
    :ivar rate: Consensus rate used.
    :ivar direction: Conversion direction.
    :ivar computed_estimate: Deposit converted at the consensus rate.
    :ivar user_predicted_amount: The user's client-side estimate.
    :ivar chosen_amount: The lower of the two estimates.
    :ivar fee_rate: Fee applied.
    :ivar final_amount: Amount owed after the fee.
    """

    deposited_amount: Decimal
    rate: Decimal
    direction: RateDirection
    computed_estimate: Decimal
    user_predicted_amount: Decimal
    chosen_amount: Decimal
    fee_rate: Decimal
    final_amount: Decimal

    @property
    def used_user_prediction(self) -> bool:
        """Check if the user's estimate was the binding one."""
        return self.user_predicted_amount < self.computed_estimate

    def payout_units(self, asset: TokenSpec) -> int:
        """Final amount in the payout asset's base units, rounded down."""
        return asset.to_units(self.final_amount)


def parse_prediction(value: Any) -> Decimal:
    """Validate the user-predicted output amount.

    :param value: Raw value from the request.
    :returns: Positive Decimal.
    :raises InvalidPredictionError: If absent, non-numeric or not positive.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidPredictionError("predicted amount is required")
    try:
        prediction = to_decimal(value.strip() if isinstance(value, str) else value)
    except ValueError as e:
        raise InvalidPredictionError(f"predicted amount is not numeric: {value!r}") from e
    if prediction <= 0:
        raise InvalidPredictionError(f"predicted amount must be positive: {value}")
    return prediction


def compute_settlement(
    deposited_amount: Decimal,
    rate: Decimal,
    user_predicted_amount: Any,
    fee_rate: Decimal = DEFAULT_FEE_RATE,
    direction: RateDirection = RateDirection.DIVIDE,
) -> SettlementDecision:
    """Compute the payout for a verified deposit.

    :param deposited_amount: Verified deposit amount (decimal, not base units).
    :param rate: Consensus rate (quote per base).
    :param user_predicted_amount: The user's predicted output amount.
    :param fee_rate: Fee as a fraction in [0, 1).
    :param direction: DIVIDE for ``deposit / rate``, MULTIPLY for ``deposit * rate``.
    :returns: Settlement decision.
    :raises InvalidPredictionError: If the prediction is absent, non-numeric or <= 0.
    :raises InputError: If the deposit is negative or the fee is out of range.
    :raises ValueError: If the rate is not positive.
    """
    prediction = parse_prediction(user_predicted_amount)
    deposited = to_decimal(deposited_amount)
    rate = to_decimal(rate)
    fee = to_decimal(fee_rate)

    if deposited < 0:
        raise InputError(f"deposited amount must not be negative: {deposited}")
    if fee < 0 or fee >= 1:
        raise InputError(f"fee rate must be in [0, 1): {fee}")
    if rate <= 0:
        raise ValueError(f"consensus rate must be positive: {rate}")

    direction = RateDirection(direction)
    with localcontext() as ctx:
        ctx.prec = SETTLEMENT_PRECISION
        if direction is RateDirection.DIVIDE:
            computed = deposited / rate
        else:
            computed = deposited * rate
        chosen = min(computed, prediction)
        final = chosen * (1 - fee)

    decision = SettlementDecision(
        deposited_amount=deposited,
        rate=rate,
        direction=direction,
        computed_estimate=computed,
        user_predicted_amount=prediction,
        chosen_amount=chosen,
        fee_rate=fee,
        final_amount=final,
    )
    logger.info(
        f"Settlement: computed={computed} predicted={prediction} "
        f"chosen={chosen} fee={fee} final={final}"
    )
    return decision


class SettlementCalculator:
    """Settlement bound to a fee rate and direction (one per route).

    :ivar fee_rate: Flat fee.
    :ivar direction: Conversion direction.
    """

    def __init__(
        self,
        fee_rate: Decimal = DEFAULT_FEE_RATE,
        direction: RateDirection = RateDirection.DIVIDE,
    ) -> None:
        self.fee_rate = to_decimal(fee_rate)
        self.direction = RateDirection(direction)

    def settle(
        self, deposited_amount: Decimal, rate: Decimal, user_predicted_amount: Any
    ) -> SettlementDecision:
        """Compute the settlement with this calculator's fee and direction."""
        return compute_settlement(
            deposited_amount,
            rate,
            user_predicted_amount,
            fee_rate=self.fee_rate,
            direction=self.direction,
        )
