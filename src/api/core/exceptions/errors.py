"""Typed errors for the admission, ledger and generation flow."""

from fastapi import status

from .base import WedAIException
from ..messages import MessageCode


class RateLimitedError(WedAIException):
    """Caller exceeded an hourly or daily window; retryable after ``retry_after``."""

    def __init__(
        self,
        retry_after: int,
        remaining_hourly: int,
        remaining_daily: int,
        limit_hourly: int | None = None,
        limit_daily: int | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(
            MessageCode.RATE_LIMIT_EXCEEDED,
            status.HTTP_429_TOO_MANY_REQUESTS,
            details={
                "retry_after": retry_after,
                "remaining_hourly": remaining_hourly,
                "remaining_daily": remaining_daily,
            },
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Remaining-Hourly": str(remaining_hourly),
                "X-RateLimit-Remaining-Daily": str(remaining_daily),
                **(
                    {"X-RateLimit-Limit-Hourly": str(limit_hourly)}
                    if limit_hourly is not None
                    else {}
                ),
                **(
                    {"X-RateLimit-Limit-Daily": str(limit_daily)}
                    if limit_daily is not None
                    else {}
                ),
            },
        )


class InsufficientCreditError(WedAIException):
    """Normal outcome: the identity cannot cover the requested amount."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            MessageCode.INSUFFICIENT_CREDITS,
            status.HTTP_402_PAYMENT_REQUIRED,
            details={"requested": requested, "available": available},
        )


class ProviderTransientError(WedAIException):
    """Generation failed in a way the caller may retry. Credit already refunded."""

    def __init__(self, reason: str = "transient"):
        # reason is for logs only and never rendered to the caller
        self.reason = reason
        super().__init__(
            MessageCode.GENERATION_TEMPORARILY_FAILED,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retryable": True},
        )


class ProviderPermanentError(WedAIException):
    """Generation was refused for good. Credit already refunded."""

    def __init__(self, reason: str = "permanent"):
        self.reason = reason
        super().__init__(
            MessageCode.GENERATION_FAILED,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"retryable": False},
        )


class StorageUnavailableError(WedAIException):
    """Counter or ledger storage is unreachable; the request is denied."""

    def __init__(self, component: str):
        self.component = component
        super().__init__(
            MessageCode.SERVICE_UNAVAILABLE,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retryable": True},
            headers={"Retry-After": "1"},
        )


class RequestInProgressError(WedAIException):
    def __init__(self, request_id: str):
        super().__init__(
            MessageCode.REQUEST_IN_PROGRESS,
            status.HTTP_409_CONFLICT,
            details={"request_id": request_id},
            headers={"Retry-After": "5"},
        )


class RequestIdConflictError(WedAIException):
    """The idempotency key belongs to a different identity."""

    def __init__(self, request_id: str):
        super().__init__(
            MessageCode.REQUEST_ID_CONFLICT,
            status.HTTP_409_CONFLICT,
            details={"request_id": request_id},
        )


class UsageRequestNotFoundError(WedAIException):
    def __init__(self, request_id: str):
        super().__init__(
            MessageCode.USAGE_REQUEST_NOT_FOUND,
            status.HTTP_404_NOT_FOUND,
            details={"request_id": request_id},
        )


class ReservationConflictError(Exception):
    """A settlement contradicts the reservation's terminal state (never rendered)."""

    def __init__(self, reservation_id: str, current_state: str, attempted: str):
        self.reservation_id = reservation_id
        self.current_state = current_state
        self.attempted = attempted
        super().__init__(
            f"cannot {attempted} reservation {reservation_id} in state {current_state}"
        )


def error_for_stored_code(error_code: str) -> WedAIException:
    """Rebuild the caller-facing error recorded on a settled usage request."""
    if error_code == MessageCode.GENERATION_FAILED.value:
        return ProviderPermanentError("replayed")
    return ProviderTransientError("replayed")
