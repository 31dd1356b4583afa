"""Booking State Machine - transition table and guards

This module is the single source of truth for which status changes are legal,
for which actor, and under which condition. Both the booking aggregate and the
UI flags projection read from it.

    pending -> confirmed -> inProgress -> completed
       |           |            |            |
       +--> cancelled <---------+        disputed -> refunded
                   |                         ^
                   +-------------------------+
"""
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Dict, FrozenSet, List, NamedTuple, Optional, Tuple

from domain.enums import ActorRole, BookingStatus
from domain.errors import InvalidTransition, PermissionDenied

if TYPE_CHECKING:
    from domain.entities import Booking
    from domain.value_objects import Actor


class Guard(str, Enum):
    NONE = "none"
    EVENT_NOT_PAST = "event_not_past"
    EVENT_DATE_ARRIVED = "event_date_arrived"
    WITHIN_DISPUTE_WINDOW = "within_dispute_window"


class TransitionRule(NamedTuple):
    actors: FrozenSet[ActorRole]
    guard: Guard


_CLIENT = frozenset({ActorRole.CLIENT})
_SUPPLIER = frozenset({ActorRole.SUPPLIER})
_PARTIES = frozenset({ActorRole.CLIENT, ActorRole.SUPPLIER})
_OPERATOR = frozenset({ActorRole.OPERATOR})

TRANSITIONS: Dict[Tuple[BookingStatus, BookingStatus], Tuple[TransitionRule, ...]] = {
    (BookingStatus.PENDING, BookingStatus.CONFIRMED): (
        TransitionRule(_SUPPLIER, Guard.NONE),
    ),
    (BookingStatus.PENDING, BookingStatus.CANCELLED): (
        # supplier rejection
        TransitionRule(_SUPPLIER, Guard.NONE),
        TransitionRule(_PARTIES, Guard.EVENT_NOT_PAST),
        TransitionRule(_OPERATOR, Guard.NONE),
    ),
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED): (
        TransitionRule(_PARTIES, Guard.EVENT_NOT_PAST),
        TransitionRule(_OPERATOR, Guard.NONE),
    ),
    (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS): (
        TransitionRule(_SUPPLIER, Guard.EVENT_DATE_ARRIVED),
    ),
    (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED): (
        TransitionRule(_SUPPLIER, Guard.NONE),
    ),
    (BookingStatus.CONFIRMED, BookingStatus.DISPUTED): (
        TransitionRule(_PARTIES, Guard.NONE),
    ),
    (BookingStatus.IN_PROGRESS, BookingStatus.DISPUTED): (
        TransitionRule(_PARTIES, Guard.NONE),
    ),
    (BookingStatus.COMPLETED, BookingStatus.DISPUTED): (
        TransitionRule(_CLIENT, Guard.WITHIN_DISPUTE_WINDOW),
    ),
    (BookingStatus.DISPUTED, BookingStatus.REFUNDED): (
        TransitionRule(_OPERATOR, Guard.NONE),
    ),
}

TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REFUNDED,
})

# Entering one of these gives the reserved slot back to the ledger.
SLOT_RELEASING_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})

_GUARD_FAILURES = {
    Guard.EVENT_NOT_PAST: "the event date has already passed",
    Guard.EVENT_DATE_ARRIVED: "the event date has not arrived yet",
    Guard.WITHIN_DISPUTE_WINDOW: "the dispute window has closed",
}


def as_calendar_date(value) -> date:
    """Reduce a datetime to its calendar date; dates pass through"""
    if isinstance(value, datetime):
        return value.date()
    return value


def event_not_past(event_date: date, today: date) -> bool:
    return event_date >= today


def event_date_arrived(event_date: date, today: date) -> bool:
    return today >= event_date


def within_dispute_window(completed_at: Optional[datetime], today: date, window_days: int) -> bool:
    if completed_at is None:
        return False
    return (today - completed_at.date()).days <= window_days


def guard_holds(guard: Guard, booking: "Booking", today: date, dispute_window_days: int) -> bool:
    if guard is Guard.EVENT_NOT_PAST:
        return event_not_past(booking.event_date, today)
    if guard is Guard.EVENT_DATE_ARRIVED:
        return event_date_arrived(booking.event_date, today)
    if guard is Guard.WITHIN_DISPUTE_WINDOW:
        return within_dispute_window(booking.completed_at, today, dispute_window_days)
    return True


def allowed_transitions(status: BookingStatus) -> List[BookingStatus]:
    """All statuses reachable from `status`, regardless of actor"""
    return [target for (source, target) in TRANSITIONS if source == status]


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(
    booking: "Booking",
    target: BookingStatus,
    role: ActorRole,
    today: date,
    dispute_window_days: int
) -> bool:
    rules = TRANSITIONS.get((booking.status, target), ())
    return any(
        role in rule.actors and guard_holds(rule.guard, booking, today, dispute_window_days)
        for rule in rules
    )


def validate_transition(
    booking: "Booking",
    target: BookingStatus,
    role: ActorRole,
    today: date,
    dispute_window_days: int
) -> None:
    """Raise InvalidTransition or PermissionDenied unless the change is legal"""
    if target == BookingStatus.PENDING:
        raise InvalidTransition(booking.status, target, "a booking never returns to pending")

    rules = TRANSITIONS.get((booking.status, target))
    if not rules:
        raise InvalidTransition(booking.status, target, "transition not allowed")

    role_rules = [rule for rule in rules if role in rule.actors]
    if not role_rules:
        raise PermissionDenied(
            f"A {role.value} cannot move a booking from {booking.status.value} to {target.value}",
            details={"from": booking.status.value, "to": target.value, "role": role.value},
        )

    for rule in role_rules:
        if guard_holds(rule.guard, booking, today, dispute_window_days):
            return
    raise InvalidTransition(booking.status, target, _GUARD_FAILURES[role_rules[-1].guard])


def ensure_role_may_request(target: BookingStatus, role: ActorRole) -> None:
    """Raise unless some edge into `target` is open to `role`; used for repeated requests"""
    rules = [rule for (_, to), edge_rules in TRANSITIONS.items() if to == target for rule in edge_rules]
    if not rules:
        raise InvalidTransition(target, target, "no transition leads to this status")
    if not any(role in rule.actors for rule in rules):
        raise PermissionDenied(
            f"A {role.value} cannot move a booking to {target.value}",
            details={"to": target.value, "role": role.value},
        )


def ensure_participant(booking: "Booking", actor: "Actor") -> None:
    """Clients act on their own bookings, suppliers on bookings made with them"""
    if actor.role == ActorRole.OPERATOR:
        return
    if actor.role == ActorRole.CLIENT and actor.user_id == booking.client_id:
        return
    if actor.role == ActorRole.SUPPLIER and actor.supplier_id == booking.supplier_id:
        return
    raise PermissionDenied(
        "You do not have permission to act on this booking",
        details={"booking_id": booking.id, "role": actor.role.value},
    )
