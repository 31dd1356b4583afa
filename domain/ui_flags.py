"""UI capability flags derived from booking state

Recomputed on every read and never stored. The guard predicates come from the
state machine so the flags cannot promise an action the machine would refuse.
"""
from datetime import date
from pydantic import BaseModel

from domain.entities import Booking
from domain.enums import BookingStatus
from domain.state_machine import event_not_past, within_dispute_window

_MESSAGING_CLOSED = frozenset({BookingStatus.CANCELLED, BookingStatus.REFUNDED})


class UiFlags(BaseModel):
    can_cancel: bool
    can_pay: bool
    can_message: bool
    can_review: bool
    can_request_refund: bool

    class Config:
        frozen = True


def project_ui_flags(
    booking: Booking,
    today: date,
    has_pending_dispute: bool = False,
    has_review: bool = False,
    dispute_window_days: int = 7
) -> UiFlags:
    status = booking.status
    return UiFlags(
        can_cancel=(
            status in (BookingStatus.PENDING, BookingStatus.CONFIRMED)
            and event_not_past(booking.event_date, today)
        ),
        can_pay=status == BookingStatus.CONFIRMED and booking.paid_amount < booking.total_price,
        can_message=status not in _MESSAGING_CLOSED,
        can_review=status == BookingStatus.COMPLETED and not has_review,
        can_request_refund=(
            status == BookingStatus.COMPLETED
            and not has_pending_dispute
            and within_dispute_window(booking.completed_at, today, dispute_window_days)
        ),
    )
