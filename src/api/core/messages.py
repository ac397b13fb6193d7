"""Centralized message codes and default messages for API responses."""

from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel


class MessageCode(str, Enum):
    """Centralized message codes for API responses."""

    # Success codes
    SUCCESS = "SUCCESS"
    GENERATION_COMPLETED = "GENERATION_COMPLETED"
    CREDITS_ADDED = "CREDITS_ADDED"
    DUPLICATE_EVENT_IGNORED = "DUPLICATE_EVENT_IGNORED"

    # Authentication & Authorization
    AUTH_REQUIRED = "AUTH_REQUIRED"
    FORBIDDEN = "FORBIDDEN"

    # Credit management
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"

    # Rate limiting
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Generation
    GENERATION_TEMPORARILY_FAILED = "GENERATION_TEMPORARILY_FAILED"
    GENERATION_FAILED = "GENERATION_FAILED"
    REQUEST_IN_PROGRESS = "REQUEST_IN_PROGRESS"
    REQUEST_ID_CONFLICT = "REQUEST_ID_CONFLICT"
    USAGE_REQUEST_NOT_FOUND = "USAGE_REQUEST_NOT_FOUND"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    # Infrastructure
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"


# Default messages for each message code
DEFAULT_MESSAGES = {
    # Success messages
    MessageCode.SUCCESS: "Operation completed successfully",
    MessageCode.GENERATION_COMPLETED: "Your portraits are ready",
    MessageCode.CREDITS_ADDED: "Credits added successfully",
    MessageCode.DUPLICATE_EVENT_IGNORED: "Event already processed",
    # Authentication & Authorization
    MessageCode.AUTH_REQUIRED: "Authentication required",
    MessageCode.FORBIDDEN: "Access denied",
    # Credit management
    MessageCode.INSUFFICIENT_CREDITS: "You have no credits left. Purchase a credit pack to keep generating.",
    # Rate limiting
    MessageCode.RATE_LIMIT_EXCEEDED: "Too many requests. Please wait before generating again.",
    # Generation
    MessageCode.GENERATION_TEMPORARILY_FAILED: "Generation is temporarily unavailable. You were not charged; please try again.",
    MessageCode.GENERATION_FAILED: "We could not generate portraits for this request. You were not charged.",
    MessageCode.REQUEST_IN_PROGRESS: "This request is still being processed",
    MessageCode.REQUEST_ID_CONFLICT: "This request id was already used by another client",
    MessageCode.USAGE_REQUEST_NOT_FOUND: "Generation request not found",
    # Validation errors
    MessageCode.VALIDATION_ERROR: "Validation failed",
    MessageCode.INVALID_INPUT: "Invalid input provided",
    # Infrastructure
    MessageCode.SERVICE_UNAVAILABLE: "Service temporarily unavailable. Please retry shortly.",
    # Generic errors
    MessageCode.INTERNAL_ERROR: "Internal server error",
    MessageCode.BAD_REQUEST: "Bad request",
    MessageCode.NOT_FOUND: "Resource not found",
}

T = TypeVar("T")


class PaginationInfo(BaseModel):
    """Common pagination information."""

    total: int
    limit: int
    offset: int
    has_more: bool


class Paginated(BaseModel, Generic[T]):
    """Generic paginated response wrapper."""

    items: list[T]
    pagination: PaginationInfo


class APIResponse(BaseModel, Generic[T]):
    """Base API response model with consistent structure and proper typing."""

    message_code: MessageCode
    message: str
    data: T | None = None

    @classmethod
    def success(
        cls,
        message_code: MessageCode = MessageCode.SUCCESS,
        message: str | None = None,
        data: T | None = None,
    ) -> "APIResponse[T]":
        """Create a success response."""
        return cls(
            message_code=message_code,
            message=message or DEFAULT_MESSAGES.get(message_code, "Success"),
            data=data,
        )


def get_default_message(message_code: MessageCode) -> str:
    """Get default message for a message code."""
    return DEFAULT_MESSAGES.get(message_code, "Operation completed")
