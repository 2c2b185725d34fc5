from __future__ import annotations

from typing import Any


VALIDATION_ERROR = "VALIDATION_ERROR"
UNAUTHORIZED = "UNAUTHORIZED"
FORBIDDEN = "FORBIDDEN"
NOT_FOUND = "NOT_FOUND"
INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
INTERNAL_ERROR = "INTERNAL_ERROR"


class ComplaintDeskError(Exception):
    """Business error surfaced to the caller with a machine-readable kind."""

    kind = INTERNAL_ERROR
    status_code = 500
    default_message = "Unexpected server error"
    retryable = False

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "error": self.kind,
            "message": self.message,
        }


class ValidationError(ComplaintDeskError, ValueError):
    kind = VALIDATION_ERROR
    status_code = 400
    default_message = "Required input is missing"


class UnauthorizedError(ComplaintDeskError):
    kind = UNAUTHORIZED
    status_code = 401
    default_message = "Authentication required"


class ForbiddenError(ComplaintDeskError, PermissionError):
    kind = FORBIDDEN
    status_code = 403
    default_message = "Access denied"


class NotFoundError(ComplaintDeskError):
    kind = NOT_FOUND
    status_code = 404
    default_message = "Complaint not found"


class InvalidStatusTransitionError(ComplaintDeskError, ValueError):
    kind = INVALID_STATUS_TRANSITION
    status_code = 409
    default_message = "Operation is not allowed in the current status"

    def __init__(self, current: Any, target: Any, message: str | None = None) -> None:
        self.current = getattr(current, "value", current)
        self.target = getattr(target, "value", target)
        super().__init__(message or f"Invalid status transition {self.current} -> {self.target}")


class InternalError(ComplaintDeskError):
    kind = INTERNAL_ERROR
    status_code = 500


class ReceiptNumberExhaustedError(InternalError):
    status_code = 503
    default_message = "Could not allocate a receipt number, please retry shortly"
    retryable = True
