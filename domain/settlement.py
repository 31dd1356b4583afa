"""Cancellation settlement calculator

Pure computation of the refund / platform fee / supplier payout split for a
cancelled booking. Nothing here reads a clock or a repository, so a preview and
the later commit return the same result for the same inputs.

The split is made over the amount actually collected (`paid_amount`):

    refund_amount + platform_fee + supplier_payout == paid_amount

Any unpaid remainder (`total_price - paid_amount`) is simply not collected and
is reported as `forfeited_amount`; it belongs to none of the three buckets.
"""
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Optional, Union

from domain.enums import ActorRole
from domain.state_machine import as_calendar_date
from domain.value_objects import CancellationPolicy, CancellationResult

if TYPE_CHECKING:
    from domain.entities import Booking


# Platform default: >30 days 100%, >14 days 75%, >7 days 50%, >72 hours 25%, else nothing.
DEFAULT_CANCELLATION_POLICY = CancellationPolicy.from_thresholds(
    [(31, "1.00"), (15, "0.75"), (8, "0.50"), (4, "0.25"), (0, "0.00")],
    platform_fee_percentage="0.10",
    name="Standard",
)

FULL_REFUND = Decimal("1")
NO_REFUND = Decimal("0")


def round_half_up(amount: Decimal) -> int:
    """Round to the currency's minor unit, halves away from zero"""
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def days_to_event(event_date: date, now: Union[date, datetime]) -> int:
    """Whole calendar days until the event, clamped at zero"""
    return max(0, (event_date - as_calendar_date(now)).days)


def select_refund_percentage(policy: CancellationPolicy, days: int) -> Decimal:
    for tier in policy.tiers:
        if tier.days_before_event <= days:
            return tier.refund_percentage
    return NO_REFUND


def _describe(paid_amount: int, percentage: Decimal, days: int, role: ActorRole) -> str:
    if paid_amount == 0:
        return "Nothing has been paid for this booking, so there is nothing to refund."
    if role == ActorRole.SUPPLIER:
        return "Cancelled by the supplier: the full amount paid will be refunded."
    if percentage == FULL_REFUND:
        return f"Cancellation {days} days before the event: the full amount paid will be refunded."
    if percentage == NO_REFUND:
        return f"Cancellation {days} days before the event: no refund applies under the cancellation policy."
    percent = (percentage * 100).normalize()
    return f"Cancellation {days} days before the event: {percent:f}% of the amount paid will be refunded."


def compute_settlement(
    total_price: int,
    paid_amount: int,
    event_date: date,
    policy: CancellationPolicy,
    now: Union[date, datetime],
    requested_by_role: ActorRole = ActorRole.CLIENT
) -> CancellationResult:
    """Split `paid_amount` into refund, platform fee and supplier payout"""
    days = days_to_event(event_date, now)

    if requested_by_role == ActorRole.SUPPLIER:
        percentage = FULL_REFUND
    else:
        percentage = select_refund_percentage(policy, days)

    refund_amount = round_half_up(Decimal(paid_amount) * percentage)
    retained = paid_amount - refund_amount
    platform_fee = round_half_up(Decimal(retained) * policy.platform_fee_percentage)
    # remainder, never rounded on its own
    supplier_payout = retained - platform_fee

    return CancellationResult(
        paid_amount=paid_amount,
        refund_amount=refund_amount,
        platform_fee=platform_fee,
        supplier_payout=supplier_payout,
        forfeited_amount=total_price - paid_amount,
        refund_percentage=percentage,
        days_to_event=days,
        message=_describe(paid_amount, percentage, days, requested_by_role),
    )


def compute_preview(
    booking: "Booking",
    policy: CancellationPolicy,
    now: Union[date, datetime],
    requested_by_role: Optional[ActorRole] = None
) -> CancellationResult:
    """Settlement for cancelling `booking` at `now`; used for previews and commits alike"""
    return compute_settlement(
        total_price=booking.total_price,
        paid_amount=booking.paid_amount,
        event_date=booking.event_date,
        policy=policy,
        now=now,
        requested_by_role=requested_by_role or ActorRole.CLIENT,
    )
