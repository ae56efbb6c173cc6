"""Error taxonomy for caretrack.

``ValidationError`` is surfaced to callers unchanged. ``InsufficientDataError``
is raised by the trend/forecast math and converted into informational results
by the coordinator. ``NotificationDeliveryError`` is raised by transports and
turned into an error ``DeliveryResult`` at the sink boundary.
``PersistenceError`` wraps store failures; scheduler ticks abandon their
remaining work when they see it and try again on the next tick.
"""

from __future__ import annotations

GENERIC_FAILURE_MESSAGE = "Something went wrong while processing your request. Please try again."


class CaretrackError(Exception):
    """Base class for all caretrack errors."""


class ValidationError(CaretrackError, ValueError):
    """Raised when input is malformed (e.g. an unparseable blood-pressure string)."""


class InsufficientDataError(CaretrackError):
    """Raised when a series is too short for trend analysis or forecasting.

    Attributes:
        required: Minimum number of points the operation needs.
        actual: Number of points that were supplied.
    """

    def __init__(self, required: int, actual: int) -> None:
        self.required = required
        self.actual = actual
        super().__init__(f"Need at least {required} data points, got {actual}")


class NotificationDeliveryError(CaretrackError):
    """Raised by a transport when the downstream sink is unreachable or rejects a message."""


class PersistenceError(CaretrackError):
    """Raised when the reading store is unavailable or a query fails."""


class NotFoundError(CaretrackError, LookupError):
    """Raised when a patient, medication, or reading does not exist."""


def public_error_message(exc: BaseException, development: bool = False) -> str:
    """Return the message an API caller should see for *exc*.

    Validation and not-found errors are always shown because the caller can act
    on them. Everything else collapses to a generic message unless
    *development* is set.
    """
    if isinstance(exc, ValidationError | NotFoundError):
        return str(exc)
    if development:
        return f"{type(exc).__name__}: {exc}"
    return GENERIC_FAILURE_MESSAGE
