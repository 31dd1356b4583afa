"""Domain Entities - Aggregates"""
import re
from pydantic import BaseModel, Field, validator
from uuid import uuid4
from datetime import datetime, date, timezone
from typing import Optional, List

from domain.enums import ActorRole, BookingStatus, SlotState
from domain.errors import SlotUnavailable, ValidationError
from domain.state_machine import (
    SLOT_RELEASING_STATUSES,
    ensure_participant,
    is_terminal,
    validate_transition,
)
from domain.value_objects import (
    Actor,
    CancellationRecord,
    CancellationResult,
    SelectedCustomization,
    StatusChange,
)

BOOKING_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

_STATUS_TIMESTAMPS = {
    BookingStatus.CONFIRMED: "confirmed_at",
    BookingStatus.IN_PROGRESS: "started_at",
    BookingStatus.COMPLETED: "completed_at",
    BookingStatus.CANCELLED: "cancelled_at",
    BookingStatus.DISPUTED: "disputed_at",
    BookingStatus.REFUNDED: "refunded_at",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_booking_id() -> str:
    return str(uuid4())


class Booking(BaseModel):
    """Booking Aggregate Root Entity"""

    # Identity
    id: str = Field(default_factory=new_booking_id)

    # References to other contexts
    client_id: str
    supplier_id: str
    package_id: str

    # Event details
    event_name: str
    event_date: date
    event_time: str = ""
    event_location: str
    guest_count: int = Field(gt=0)

    # Money, in minor units
    total_price: int = Field(gt=0)
    paid_amount: int = Field(ge=0, default=0)
    currency: str = "AOA"
    selected_customizations: List[SelectedCustomization] = []

    # Lifecycle
    status: BookingStatus = BookingStatus.PENDING
    slot_released: bool = False
    cancellation: Optional[CancellationRecord] = None
    status_history: List[StatusChange] = []

    # Metadata
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    version: int = 1

    class Config:
        from_attributes = True

    @validator('id')
    def id_is_opaque_token(cls, v):
        if not BOOKING_ID_PATTERN.match(v):
            raise ValueError('Booking id must be 1-128 characters of letters, digits, "-" or "_"')
        return v

    @validator('paid_amount')
    def paid_not_above_total(cls, v, values):
        if 'total_price' in values and v > values['total_price']:
            raise ValueError('Paid amount cannot exceed the total price')
        return v

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        client_id: str,
        supplier_id: str,
        package_id: str,
        event_name: str,
        event_date: date,
        event_location: str,
        guest_count: int,
        total_price: int,
        today: date,
        now: datetime,
        event_time: str = "",
        currency: str = "AOA",
        selected_customizations: Optional[List[SelectedCustomization]] = None,
        booking_id: Optional[str] = None
    ) -> "Booking":
        """Create a pending booking with validation"""
        Booking._validate_id(booking_id)
        Booking._validate_event(event_name, event_location, event_date, today)
        Booking._validate_guest_count(guest_count)
        Booking._validate_price(total_price)
        customizations = list(selected_customizations or [])
        Booking._validate_customizations(customizations)

        booking = Booking(
            id=booking_id or new_booking_id(),
            client_id=client_id,
            supplier_id=supplier_id,
            package_id=package_id,
            event_name=event_name.strip(),
            event_date=event_date,
            event_time=event_time,
            event_location=event_location.strip(),
            guest_count=guest_count,
            total_price=total_price,
            paid_amount=0,
            currency=currency,
            selected_customizations=customizations,
            status=BookingStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        booking.status_history.append(StatusChange(
            from_status=None,
            to_status=BookingStatus.PENDING,
            actor_id=client_id,
            actor_role=ActorRole.CLIENT,
            changed_at=now,
        ))
        return booking

    # ==================== STATE TRANSITION METHODS ====================
    def transition_to(
        self,
        target: BookingStatus,
        actor: Actor,
        now: datetime,
        dispute_window_days: int,
        reason: Optional[str] = None
    ) -> None:
        """Move to `target` after checking the actor and the transition table"""
        ensure_participant(self, actor)
        validate_transition(self, target, actor.role, now.date(), dispute_window_days)
        self._record_status(target, actor, now, reason)

    def cancel(
        self,
        actor: Actor,
        settlement: CancellationResult,
        now: datetime,
        dispute_window_days: int,
        reason: Optional[str] = None
    ) -> None:
        """Cancel and keep the settlement as the audit record"""
        ensure_participant(self, actor)
        validate_transition(self, BookingStatus.CANCELLED, actor.role, now.date(), dispute_window_days)
        self.cancellation = CancellationRecord(
            result=settlement,
            cancelled_by=actor.user_id,
            cancelled_by_role=actor.role,
            reason=reason,
            cancelled_at=now,
        )
        self._record_status(BookingStatus.CANCELLED, actor, now, reason)

    def record_payment(self, amount: int, actor: Actor, now: datetime) -> None:
        """Register money collected from the client"""
        ensure_participant(self, actor)
        if actor.role == ActorRole.SUPPLIER:
            raise ValidationError("Payments are recorded by the client or an operator")
        if self.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise ValidationError(
                f"Cannot record a payment for a {self.status.value} booking",
                details={"status": self.status.value},
            )
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than 0")
        if self.paid_amount + amount > self.total_price:
            raise ValidationError(
                "Payment would exceed the total price",
                details={"remaining_amount": self.remaining_amount},
            )

        self.paid_amount += amount
        self.updated_at = now
        self.version += 1

    def mark_slot_released(self, now: datetime) -> None:
        self.slot_released = True
        self.updated_at = now
        self.version += 1

    # ==================== QUERY METHODS ====================
    @property
    def remaining_amount(self) -> int:
        return self.total_price - self.paid_amount

    @property
    def is_fully_paid(self) -> bool:
        return self.paid_amount >= self.total_price

    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def needs_slot_release(self) -> bool:
        """Terminal for the date but the slot is still held"""
        return self.status in SLOT_RELEASING_STATUSES and not self.slot_released

    # ==================== PRIVATE METHODS ====================
    def _record_status(
        self,
        target: BookingStatus,
        actor: Actor,
        now: datetime,
        reason: Optional[str]
    ) -> None:
        self.status_history.append(StatusChange(
            from_status=self.status,
            to_status=target,
            actor_id=actor.user_id,
            actor_role=actor.role,
            reason=reason,
            changed_at=now,
        ))
        self.status = target
        setattr(self, _STATUS_TIMESTAMPS[target], now)
        self.updated_at = now
        self.version += 1

    @staticmethod
    def _validate_id(booking_id: Optional[str]) -> None:
        if booking_id is not None and not BOOKING_ID_PATTERN.match(booking_id):
            raise ValidationError(
                'Booking id must be 1-128 characters of letters, digits, "-" or "_"',
                details={"field": "booking_id"},
            )

    @staticmethod
    def _validate_event(event_name: str, event_location: str, event_date: date, today: date) -> None:
        if not event_name or not event_name.strip():
            raise ValidationError("Event name is required", details={"field": "event_name"})
        if not event_location or not event_location.strip():
            raise ValidationError("Event location is required", details={"field": "event_location"})
        if event_date < today:
            raise ValidationError("Event date cannot be in the past", details={"field": "event_date"})

    @staticmethod
    def _validate_guest_count(guest_count: int) -> None:
        if guest_count <= 0:
            raise ValidationError("Guest count must be greater than 0", details={"field": "guest_count"})

    @staticmethod
    def _validate_price(total_price: int) -> None:
        if total_price <= 0:
            raise ValidationError("Total price must be greater than 0", details={"field": "total_price"})

    @staticmethod
    def _validate_customizations(customizations: List[SelectedCustomization]) -> None:
        names = [c.name for c in customizations]
        if len(names) != len(set(names)):
            raise ValidationError(
                "Each customization can only be selected once",
                details={"field": "selected_customizations"},
            )


class AvailabilitySlot(BaseModel):
    """Availability Aggregate Root Entity, one per supplier and calendar date"""

    # Composite Identity
    supplier_id: str
    slot_date: date

    # Capacity Tracking
    capacity: int = Field(ge=1, default=1)
    booked_count: int = Field(ge=0, default=0)
    holders: List[str] = []

    # Supplier block, independent of bookings
    blocked: bool = False
    block_reason: Optional[str] = None

    # Metadata
    last_updated: datetime = Field(default_factory=utcnow)
    version: int = 0

    class Config:
        from_attributes = True

    # ==================== COMPUTED PROPERTIES ====================
    @property
    def remaining_capacity(self) -> int:
        return max(0, self.capacity - self.booked_count)

    @property
    def is_available(self) -> bool:
        return not self.blocked and self.booked_count < self.capacity

    @property
    def is_partially_booked(self) -> bool:
        return 0 < self.booked_count < self.capacity

    @property
    def is_fully_booked(self) -> bool:
        return self.booked_count >= self.capacity

    @property
    def state(self) -> SlotState:
        if self.blocked:
            return SlotState.BLOCKED
        if self.is_fully_booked:
            return SlotState.FULLY_BOOKED
        if self.is_partially_booked:
            return SlotState.PARTIALLY_BOOKED
        return SlotState.AVAILABLE

    # ==================== KEY METHODS ====================
    def reserve(self, booking_id: Optional[str] = None) -> bool:
        """Take one unit of capacity; False when `booking_id` already holds one"""
        if booking_id is not None and booking_id in self.holders:
            return False
        if self.blocked:
            raise SlotUnavailable(self.supplier_id, self.slot_date, "blocked")
        if self.booked_count >= self.capacity:
            raise SlotUnavailable(self.supplier_id, self.slot_date, "fully_booked")

        self.booked_count += 1
        if booking_id is not None:
            self.holders.append(booking_id)
        self._touch()
        return True

    def release(self, booking_id: Optional[str] = None) -> bool:
        """Give back one unit of capacity; False when nothing changed"""
        if booking_id is not None:
            if booking_id not in self.holders:
                return False
            self.holders.remove(booking_id)
        if self.booked_count == 0:
            return False

        self.booked_count -= 1
        self._touch()
        return True

    def set_blocked(self, blocked: bool, reason: Optional[str] = None) -> None:
        self.blocked = blocked
        self.block_reason = reason if blocked else None
        self._touch()

    def set_capacity(self, capacity: int) -> None:
        if capacity < 1:
            raise ValidationError("Capacity must be at least 1", details={"field": "capacity"})
        if capacity < self.booked_count:
            raise ValidationError(
                "Capacity cannot be lower than the bookings already made for this date",
                details={"booked_count": self.booked_count},
            )
        self.capacity = capacity
        self._touch()

    def _touch(self) -> None:
        self.last_updated = utcnow()
        self.version += 1
