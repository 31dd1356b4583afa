"""Domain Enums"""
from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"
    REFUNDED = "refunded"


class ActorRole(str, Enum):
    CLIENT = "client"
    SUPPLIER = "supplier"
    OPERATOR = "operator"


class SlotState(str, Enum):
    AVAILABLE = "available"
    PARTIALLY_BOOKED = "partiallyBooked"
    FULLY_BOOKED = "fullyBooked"
    BLOCKED = "blocked"
