"""Domain errors for the booking core.

Every error carries a stable code, a user-safe message and optional details.
The API layer maps them to HTTP responses through ``http_status``.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Domain error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    DATE_CONFLICT = "DATE_CONFLICT"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    STORAGE_CONFLICT = "STORAGE_CONFLICT"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"


class BookingError(Exception):
    """Base exception for all booking-core errors."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    http_status: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(BookingError, ValueError):
    """Malformed or incomplete request. Fix the input; never retried automatically."""

    code = ErrorCode.VALIDATION_ERROR
    http_status = 422


class DateConflict(BookingError):
    """The requested date cannot be booked; the user should pick another date."""

    code = ErrorCode.DATE_CONFLICT
    http_status = 409


class SlotUnavailable(DateConflict):
    """Raised by the ledger when a slot is blocked or at capacity."""

    def __init__(self, supplier_id: str, slot_date: Any, reason: str) -> None:
        super().__init__(
            message=f"Date {slot_date} is not available for this supplier",
            details={"supplier_id": supplier_id, "date": str(slot_date), "reason": reason},
        )
        self.supplier_id = supplier_id
        self.slot_date = slot_date
        self.reason = reason


class InvalidTransition(BookingError):
    """The status change is not legal from the current state."""

    code = ErrorCode.INVALID_TRANSITION
    http_status = 409

    def __init__(self, current: Any, target: Any, reason: str) -> None:
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            message=f"Cannot change booking status from {current_value} to {target_value}: {reason}",
            details={"from": current_value, "to": target_value},
        )


class PermissionDenied(BookingError):
    """The actor lacks rights for the requested action."""

    code = ErrorCode.PERMISSION_DENIED
    http_status = 403


class StorageConflict(BookingError):
    """A conditional write lost a race; re-read, re-decide and re-submit."""

    code = ErrorCode.STORAGE_CONFLICT
    http_status = 409


class BookingNotFound(BookingError):
    code = ErrorCode.BOOKING_NOT_FOUND
    http_status = 404

    def __init__(self, booking_id: str) -> None:
        super().__init__(message="Booking not found", details={"booking_id": booking_id})
        self.booking_id = booking_id
