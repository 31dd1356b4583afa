"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field, validator
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union

from domain.enums import ActorRole, BookingStatus, SlotState
from domain.value_objects import SelectedCustomization


class _Request(BaseModel):
    class Config:
        extra = "forbid"


# ============================================================================
# BOOKING SCHEMAS
# ============================================================================

class CustomizationRequest(_Request):
    """Selected customization DTO; the price is the one shown when booking"""
    name: str = Field(min_length=1, max_length=120)
    price: int = Field(ge=0, default=0)


class CreateBookingRequest(_Request):
    """Create booking request DTO"""
    booking_id: Optional[str] = Field(default=None, description="Client-chosen id, makes retries idempotent")
    supplier_id: str = Field(min_length=1)
    package_id: str = Field(min_length=1)
    event_name: str
    event_date: date
    event_time: str = ""
    event_location: str
    guest_count: int
    selected_customizations: List[Union[CustomizationRequest, str]] = []
    total_price: int = Field(description="Total in minor units")
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class StatusChangeRequest(_Request):
    """Status change request DTO"""
    target_status: BookingStatus
    reason: Optional[str] = Field(default=None, max_length=500)


class CancelBookingRequest(_Request):
    """Cancel booking request DTO"""
    reason: Optional[str] = Field(default=None, max_length=500)


class RecordPaymentRequest(_Request):
    """Record payment request DTO"""
    amount: int = Field(gt=0, description="Amount in minor units")


class StatusChangeResponse(BaseModel):
    from_status: Optional[str] = None
    to_status: str
    actor_id: str
    actor_role: str
    reason: Optional[str] = None
    changed_at: datetime


class UiFlagsResponse(BaseModel):
    """UI capability flags DTO"""
    can_cancel: bool
    can_pay: bool
    can_message: bool
    can_review: bool
    can_request_refund: bool


class CancellationResultResponse(BaseModel):
    """Cancellation settlement DTO"""
    paid_amount: int
    refund_amount: int
    platform_fee: int
    supplier_payout: int
    forfeited_amount: int
    refund_percentage: Decimal
    days_to_event: int
    message: str


class BookingResponse(BaseModel):
    """Booking response DTO"""
    booking_id: str
    client_id: str
    supplier_id: str
    package_id: str
    event_name: str
    event_date: date
    event_time: str
    event_location: str
    guest_count: int
    total_price: int
    paid_amount: int
    remaining_amount: int
    currency: str
    selected_customizations: List[SelectedCustomization]
    status: str
    slot_released: bool
    cancellation: Optional[CancellationResultResponse] = None
    status_history: List[StatusChangeResponse]
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    version: int
    ui_flags: Optional[UiFlagsResponse] = None


class CreateBookingResponse(BaseModel):
    booking_id: str
    booking: BookingResponse


class CancelBookingResponse(BaseModel):
    result: CancellationResultResponse
    booking: BookingResponse


# ============================================================================
# AVAILABILITY SCHEMAS
# ============================================================================

class BlockDateRequest(_Request):
    """Block or unblock a date request DTO"""
    blocked: bool = True
    reason: Optional[str] = Field(default=None, max_length=500)


class SetCapacityRequest(_Request):
    """Set capacity request DTO"""
    capacity: int = Field(ge=1)


class SlotResponse(BaseModel):
    """Availability slot response DTO"""
    supplier_id: str
    slot_date: date
    capacity: int
    booked_count: int
    remaining_capacity: int
    blocked: bool
    block_reason: Optional[str] = None
    state: SlotState
    is_available: bool
    last_updated: datetime
    version: int


class BlockedDatesResponse(BaseModel):
    supplier_id: str
    from_date: date
    to_date: date
    blocked_dates: List[date]


# ============================================================================
# CANCELLATION POLICY SCHEMAS
# ============================================================================

class RefundTierSchema(_Request):
    """Refund tier DTO"""
    days_before_event: int = Field(ge=0)
    refund_percentage: Decimal = Field(ge=0, le=1)


class CancellationPolicyRequest(_Request):
    """Replace cancellation policy request DTO"""
    name: str = Field(default="Custom", min_length=1, max_length=120)
    tiers: List[RefundTierSchema]
    platform_fee_percentage: Decimal = Field(ge=0, le=1)

    @validator('tiers')
    def tiers_sorted_descending(cls, v):
        days = [tier.days_before_event for tier in v]
        if any(earlier <= later for earlier, later in zip(days, days[1:])):
            raise ValueError('Refund tiers must be sorted by days_before_event, descending')
        return v


class CancellationPolicyResponse(BaseModel):
    """Cancellation policy response DTO"""
    supplier_id: str
    name: str
    tiers: List[RefundTierSchema]
    platform_fee_percentage: Decimal


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str

class TokenData(BaseModel):
    """Token payload DTO"""
    username: Optional[str] = None

class UserResponse(BaseModel):
    """User response DTO"""
    user_id: str
    username: str
    role: ActorRole
    supplier_id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    disabled: bool
