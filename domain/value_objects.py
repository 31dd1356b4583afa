"""Domain Value Objects"""
from pydantic import BaseModel, Field, validator
from pydantic import ValidationError as PydanticValidationError
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from domain.enums import ActorRole, BookingStatus
from domain.errors import ValidationError


class SelectedCustomization(BaseModel):
    """Customization chosen at booking time, with its price frozen in minor units"""
    name: str = Field(min_length=1, max_length=120)
    price: int = Field(ge=0)

    class Config:
        frozen = True


class RefundTier(BaseModel):
    """Refund percentage applying from `days_before_event` days before the event"""
    days_before_event: int = Field(ge=0)
    refund_percentage: Decimal = Field(ge=0, le=1)

    class Config:
        frozen = True


class CancellationPolicy(BaseModel):
    """Value Object for cancellation policy"""
    name: str = "Custom"
    tiers: Tuple[RefundTier, ...] = ()
    platform_fee_percentage: Decimal = Field(ge=0, le=1)

    @validator('tiers')
    def tiers_sorted_descending(cls, v):
        days = [tier.days_before_event for tier in v]
        if any(earlier <= later for earlier, later in zip(days, days[1:])):
            raise ValueError('Refund tiers must be sorted by days_before_event, descending')
        return v

    @classmethod
    def from_thresholds(
        cls,
        thresholds: Iterable[Tuple[int, Union[Decimal, float, str]]],
        platform_fee_percentage: Union[Decimal, float, str],
        name: str = "Custom"
    ) -> "CancellationPolicy":
        """Build a policy from (days_before_event, refund_percentage) pairs"""
        return cls(
            name=name,
            tiers=tuple(
                RefundTier(days_before_event=days, refund_percentage=Decimal(str(pct)))
                for days, pct in thresholds
            ),
            platform_fee_percentage=Decimal(str(platform_fee_percentage)),
        )

    class Config:
        frozen = True


class CancellationResult(BaseModel):
    """Settlement split of the paid amount; refund + fee + payout == paid"""
    paid_amount: int = Field(ge=0)
    refund_amount: int = Field(ge=0)
    platform_fee: int = Field(ge=0)
    supplier_payout: int = Field(ge=0)
    forfeited_amount: int = Field(ge=0, default=0)
    refund_percentage: Decimal = Field(ge=0, le=1)
    days_to_event: int = Field(ge=0)
    message: str

    @validator('supplier_payout')
    def buckets_sum_to_paid_amount(cls, v, values):
        if {'paid_amount', 'refund_amount', 'platform_fee'} <= values.keys():
            if values['refund_amount'] + values['platform_fee'] + v != values['paid_amount']:
                raise ValueError('refund + platform fee + supplier payout must equal the paid amount')
        return v

    class Config:
        frozen = True


class CancellationRecord(BaseModel):
    """Audit record stored with a cancelled booking"""
    result: CancellationResult
    cancelled_by: str
    cancelled_by_role: ActorRole
    reason: Optional[str] = None
    cancelled_at: datetime

    class Config:
        frozen = True


class StatusChange(BaseModel):
    """One entry of a booking's status history"""
    from_status: Optional[BookingStatus] = None
    to_status: BookingStatus
    actor_id: str
    actor_role: ActorRole
    reason: Optional[str] = None
    changed_at: datetime

    class Config:
        frozen = True


class BookingRequest(BaseModel):
    """Booking creation request, a fixed schema checked at the boundary"""
    booking_id: Optional[str] = None
    client_id: str = Field(min_length=1)
    supplier_id: str = Field(min_length=1)
    package_id: str = Field(min_length=1)
    event_name: str
    event_date: date
    event_time: str = ""
    event_location: str
    guest_count: int
    selected_customizations: List[SelectedCustomization] = []
    total_price: int
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)

    @validator('selected_customizations', pre=True)
    def name_only_means_no_extra_charge(cls, v):
        if isinstance(v, list):
            return [{"name": item, "price": 0} if isinstance(item, str) else item for item in v]
        return v

    @classmethod
    def parse(cls, payload: Mapping[str, Any]) -> "BookingRequest":
        """Validate a raw mapping, reporting schema problems as a domain ValidationError"""
        try:
            return cls(**payload)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid booking request",
                details={"errors": [
                    {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                    for err in e.errors()
                ]},
            ) from e

    class Config:
        extra = "forbid"


class Actor(BaseModel):
    """Who is acting on a booking"""
    user_id: str
    role: ActorRole
    supplier_id: Optional[str] = None

    class Config:
        frozen = True
