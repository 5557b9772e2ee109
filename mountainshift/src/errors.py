"""Exception hierarchy for the swap settlement backend.

Every exception carries an HTTP-equivalent ``status_code`` so the HTTP layer
can distinguish client errors (bad input, deposit not found) from server
errors (price sources exhausted, payout failed).

.. code-block:: python

    >>> err = TransferNotFoundError("no transfer to deposit address")
    >>> isinstance(err, VerificationError), err.status_code
    (True, 400)
"""


class ShiftError(Exception):
    """Base exception for all swap settlement errors.

    :cvar status_code: HTTP-equivalent status reported to the caller.
    """

    status_code = 500


class InputError(ShiftError):
    """Raised when request fields are missing or invalid."""

    status_code = 400


class InvalidPredictionError(InputError):
    """Raised when the user-predicted output amount is absent, non-numeric or <= 0."""

    pass


class VerificationError(ShiftError):
    """Raised when the on-chain deposit cannot be verified."""

    status_code = 400


class TxNotFoundError(VerificationError):
    """Raised when no receipt exists for the transaction hash."""

    pass


class TxNotMinedError(VerificationError):
    """Raised when the transaction exists but is not yet part of a block."""

    pass


class TxRevertedError(VerificationError):
    """Raised when the deposit transaction was mined but reverted."""

    pass


class EventNotFoundError(VerificationError):
    """Raised when no matching DepositProcessed event is present in the receipt."""

    pass


class TransferNotFoundError(VerificationError):
    """Raised when no transfer to the expected deposit address is present."""

    pass


class PriceSourceError(ShiftError):
    """Raised when a source failed and neither a cached value nor a fallback exists.

    :ivar source: Identifier of the failing source.
    :ivar reason: Failure reason reported by the adapter.
    """

    def __init__(self, source: str, reason: str):
        """Initialize the price source error.

        :param source: Source identifier.
        :param reason: Failure reason.
        """
        self.source = source
        self.reason = reason
        super().__init__(f"[{source}] no price available: {reason}")


class ConsensusError(ShiftError):
    """Raised when no consensus rate can be computed."""

    pass


class InsufficientDataError(ConsensusError):
    """Raised when fewer than the minimum number of valid prices are available.

    :ivar available: Number of valid prices.
    :ivar required: Minimum required.
    """

    def __init__(self, available: int, required: int):
        """Initialize the error.

        :param available: Number of valid prices.
        :param required: Minimum number of prices required.
        """
        self.available = available
        self.required = required
        super().__init__(
            f"insufficient valid price data: {available} available, {required} required"
        )


class AllValuesTrimmedError(ConsensusError):
    """Raised when the trim count leaves no values to average."""

    pass


class PayoutError(ShiftError):
    """Raised when the payout transfer cannot be executed."""

    pass


class PayoutNotSentError(PayoutError):
    """Raised when a payout is abandoned before any transaction was broadcast."""

    pass


class InsufficientFundsError(PayoutNotSentError):
    """Raised when the payout wallet balance is below the payout amount.

    :ivar required: Units required.
    :ivar available: Units held by the payout wallet.
    """

    def __init__(self, message: str, required: int, available: int):
        """Initialize the error.

        :param message: Error message.
        :param required: Base units required.
        :param available: Base units available.
        """
        self.required = required
        self.available = available
        super().__init__(message)


class TransferFailedError(PayoutError):
    """Raised when broadcasting or confirming the payout transfer fails."""

    pass


class DuplicateSettlementError(ShiftError):
    """Raised when a settlement for the same deposit is already in progress."""

    status_code = 409


class UnknownRouteError(ShiftError):
    """Raised when a swap route name is not configured."""

    status_code = 404
