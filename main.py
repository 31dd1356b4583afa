from fastapi import FastAPI, HTTPException, Depends
from datetime import date, timedelta
from typing import List, Optional
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Bookings
    CreateBookingRequest, CreateBookingResponse, StatusChangeRequest, CancelBookingRequest,
    CancelBookingResponse, RecordPaymentRequest, BookingResponse, StatusChangeResponse,
    UiFlagsResponse, CancellationResultResponse,
    # Availability
    BlockDateRequest, SetCapacityRequest, SlotResponse, BlockedDatesResponse,
    # Cancellation policy
    CancellationPolicyRequest, CancellationPolicyResponse, RefundTierSchema,
    # Auth
    Token, UserResponse
)

from api.dependencies import get_current_active_user, get_current_actor, require_operator, fake_users_db, get_user
from api.errors import register_error_handlers
from infrastructure.config import Settings, get_settings
from infrastructure.logging_config import configure_logging
from infrastructure.security import verify_password, create_access_token
from domain.auth import User

from application.services import AvailabilityLedger, BookingStateMachine, Clock, ConflictResolver
from infrastructure.repositories.in_memory_repositories import (
    InMemoryBookingRepository, InMemoryAvailabilityRepository, InMemoryCancellationPolicyRepository
)
from domain.entities import AvailabilitySlot, Booking, utcnow
from domain.enums import ActorRole, BookingStatus, SlotState
from domain.errors import PermissionDenied
from domain.repositories import AvailabilityRepository, BookingRepository, CancellationPolicyRepository
from domain.ui_flags import UiFlags
from domain.value_objects import Actor, BookingRequest, CancellationPolicy, CancellationResult

configure_logging(get_settings().log_level)

app = FastAPI(
    title="Event Booking API",
    description="Reservation and settlement core for an event supplier marketplace",
    version="1.0.0"
)
register_error_handlers(app)

# Initialize repositories
booking_repo = InMemoryBookingRepository()
availability_repo = InMemoryAvailabilityRepository()
policy_repo = InMemoryCancellationPolicyRepository()

# Dependency injection
def get_booking_repository() -> BookingRepository:
    return booking_repo

def get_availability_repository() -> AvailabilityRepository:
    return availability_repo

def get_policy_repository() -> CancellationPolicyRepository:
    return policy_repo

def get_clock() -> Clock:
    return utcnow

def get_availability_ledger(
    repository: AvailabilityRepository = Depends(get_availability_repository),
    settings: Settings = Depends(get_settings)
) -> AvailabilityLedger:
    return AvailabilityLedger(repository, settings)

def get_conflict_resolver(
    repository: BookingRepository = Depends(get_booking_repository),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock)
) -> ConflictResolver:
    return ConflictResolver(repository, ledger, settings, clock)

def get_booking_state_machine(
    repository: BookingRepository = Depends(get_booking_repository),
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
    policies: CancellationPolicyRepository = Depends(get_policy_repository),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock)
) -> BookingStateMachine:
    return BookingStateMachine(repository, ledger, policies, settings, clock)

def _ensure_supplier_owner(actor: Actor, supplier_id: str) -> None:
    """Suppliers manage their own calendar and policy; operators manage any"""
    if actor.role == ActorRole.OPERATOR:
        return
    if actor.role != ActorRole.SUPPLIER or actor.supplier_id != supplier_id:
        raise PermissionDenied(
            "Only the supplier or an operator can manage this supplier",
            details={"supplier_id": supplier_id},
        )

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/booking-status", tags=["Enum Reference"])
async def get_booking_statuses():
    """Get all BookingStatus enum values"""
    return {
        "values": [item.value for item in BookingStatus],
        "description": "Booking status values: pending, confirmed, inProgress, completed, cancelled, disputed, refunded"
    }

@app.get("/api/enums/actor-role", tags=["Enum Reference"])
async def get_actor_roles():
    """Get all ActorRole enum values"""
    return {
        "values": [item.value for item in ActorRole],
        "description": "Actor role values: client, supplier, operator"
    }

@app.get("/api/enums/slot-state", tags=["Enum Reference"])
async def get_slot_states():
    """Get all SlotState enum values"""
    return {
        "values": [item.value for item in SlotState],
        "description": "Slot state values: available, partiallyBooked, fullyBooked, blocked"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    settings: Settings = Depends(get_settings)
):
    user = get_user(fake_users_db, form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token(
        data={"sub": user.username, "role": user.role.value}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user

# ============================================================================
# BOOKING ENDPOINTS
# ============================================================================

@app.post("/api/bookings", response_model=CreateBookingResponse, status_code=201, tags=["Bookings"])
async def create_booking(
    request: CreateBookingRequest,
    resolver: ConflictResolver = Depends(get_conflict_resolver),
    machine: BookingStateMachine = Depends(get_booking_state_machine),
    actor: Actor = Depends(get_current_actor)
):
    """Create a pending booking, reserving the supplier's date"""
    if actor.role != ActorRole.CLIENT:
        raise PermissionDenied("Only clients can create bookings")

    payload = request.model_dump()
    payload["client_id"] = actor.user_id
    booking = await resolver.create_booking(BookingRequest.parse(payload))
    return CreateBookingResponse(
        booking_id=booking.id,
        booking=_booking_to_response(booking, machine.ui_flags(booking))
    )

@app.get("/api/bookings", response_model=List[BookingResponse], tags=["Bookings"])
async def list_my_bookings(
    machine: BookingStateMachine = Depends(get_booking_state_machine),
    actor: Actor = Depends(get_current_actor)
):
    """Get the bookings of the current client or supplier"""
    if actor.role == ActorRole.CLIENT:
        bookings = await machine.list_bookings_for_client(actor.user_id)
    elif actor.role == ActorRole.SUPPLIER and actor.supplier_id:
        bookings = await machine.list_bookings_for_supplier(actor.supplier_id)
    else:
        raise PermissionDenied("Operators look bookings up by id")
    return [_booking_to_response(b, machine.ui_flags(b)) for b in bookings]

@app.get("/api/bookings/{booking_id}", response_model=BookingResponse, tags=["Bookings"])
async def get_booking(
    booking_id: str,
    machine: BookingStateMachine = Depends(get_booking_state_machine),
    actor: Actor = Depends(get_current_actor)
):
    """Get booking by ID, with UI flags"""
    booking = await machine.get_booking_for(booking_id, actor)
    return _booking_to_response(booking, machine.ui_flags(booking))

@app.post("/api/bookings/{booking_id}/status", response_model=BookingResponse, tags=["Bookings"])
async def change_booking_status(
    booking_id: str,
    request: StatusChangeRequest,
    machine: BookingStateMachine = Depends(get_booking_state_machine),
    actor: Actor = Depends(get_current_actor)
):
    """Move a booking to another status"""
    booking = await machine.transition(booking_id, request.target_status, actor, request.reason)
    return _booking_to_response(booking, machine.ui_flags(booking))

@app.get(
    "/api/bookings/{booking_id}/cancellation-preview",
    response_model=CancellationResultResponse,
    tags=["Bookings"]
)
async def preview_cancellation(
    booking_id: str,
    requested_by_role: Optional[ActorRole] = None,
    machine: BookingStateMachine = Depends(get_booking_state_machine),
    actor: Actor = Depends(get_current_actor)
):
    """Show what cancelling now would refund, without cancelling"""
    result = await machine.preview_cancellation(booking_id, requested_by_role or actor.role, actor)
    return _result_to_response(result)

@app.post("/api/bookings/{booking_id}/cancel", response_model=CancelBookingResponse, tags=["Bookings"])
async def cancel_booking(
    booking_id: str,
    request: CancelBookingRequest,
    machine: BookingStateMachine = Depends(get_booking_state_machine),
    actor: Actor = Depends(get_current_actor)
):
    """Cancel a booking and settle the amount paid"""
    result, booking = await machine.cancel(booking_id, actor, request.reason)
    return CancelBookingResponse(
        result=_result_to_response(result),
        booking=_booking_to_response(booking, machine.ui_flags(booking))
    )

@app.post("/api/bookings/{booking_id}/payments", response_model=BookingResponse, tags=["Bookings"])
async def record_payment(
    booking_id: str,
    request: RecordPaymentRequest,
    machine: BookingStateMachine = Depends(get_booking_state_machine),
    actor: Actor = Depends(get_current_actor)
):
    """Record money collected from the client"""
    booking = await machine.record_payment(booking_id, request.amount, actor)
    return _booking_to_response(booking, machine.ui_flags(booking))

# ============================================================================
# AVAILABILITY ENDPOINTS
# ============================================================================

@app.get("/api/availability/{supplier_id}/blocked", response_model=BlockedDatesResponse, tags=["Availability"])
async def list_blocked_dates(
    supplier_id: str,
    from_date: date,
    to_date: date,
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
    current_user: User = Depends(get_current_active_user)
):
    """Get blocked dates for a supplier in a date range"""
    blocked_dates = await ledger.list_blocked_dates(supplier_id, from_date, to_date)
    return BlockedDatesResponse(
        supplier_id=supplier_id,
        from_date=from_date,
        to_date=to_date,
        blocked_dates=blocked_dates
    )

@app.get("/api/availability/{supplier_id}/{slot_date}", response_model=SlotResponse, tags=["Availability"])
async def get_slot(
    supplier_id: str,
    slot_date: date,
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
    current_user: User = Depends(get_current_active_user)
):
    """Get availability for a supplier on a date"""
    slot = await ledger.get_slot(supplier_id, slot_date)
    return _slot_to_response(slot)

@app.put("/api/availability/{supplier_id}/{slot_date}/block", response_model=SlotResponse, tags=["Availability"])
async def set_slot_blocked(
    supplier_id: str,
    slot_date: date,
    request: BlockDateRequest,
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
    actor: Actor = Depends(get_current_actor)
):
    """Block or unblock a date"""
    _ensure_supplier_owner(actor, supplier_id)
    slot = await ledger.set_blocked(supplier_id, slot_date, request.blocked, request.reason)
    return _slot_to_response(slot)

@app.put("/api/availability/{supplier_id}/{slot_date}/capacity", response_model=SlotResponse, tags=["Availability"])
async def set_slot_capacity(
    supplier_id: str,
    slot_date: date,
    request: SetCapacityRequest,
    ledger: AvailabilityLedger = Depends(get_availability_ledger),
    actor: Actor = Depends(get_current_actor)
):
    """Change how many bookings a date accepts"""
    _ensure_supplier_owner(actor, supplier_id)
    slot = await ledger.set_capacity(supplier_id, slot_date, request.capacity)
    return _slot_to_response(slot)

# ============================================================================
# CANCELLATION POLICY ENDPOINTS
# ============================================================================

@app.get(
    "/api/suppliers/{supplier_id}/cancellation-policy",
    response_model=CancellationPolicyResponse,
    tags=["Cancellation Policy"]
)
async def get_cancellation_policy(
    supplier_id: str,
    machine: BookingStateMachine = Depends(get_booking_state_machine),
    current_user: User = Depends(get_current_active_user)
):
    """Get the policy applied to a supplier's cancellations"""
    policy = await machine.get_policy(supplier_id)
    return _policy_to_response(supplier_id, policy)

@app.put(
    "/api/suppliers/{supplier_id}/cancellation-policy",
    response_model=CancellationPolicyResponse,
    tags=["Cancellation Policy"]
)
async def replace_cancellation_policy(
    supplier_id: str,
    request: CancellationPolicyRequest,
    machine: BookingStateMachine = Depends(get_booking_state_machine),
    actor: Actor = Depends(get_current_actor)
):
    """Replace a supplier's cancellation policy"""
    policy = CancellationPolicy.from_thresholds(
        [(tier.days_before_event, tier.refund_percentage) for tier in request.tiers],
        platform_fee_percentage=request.platform_fee_percentage,
        name=request.name
    )
    saved = await machine.set_policy(supplier_id, policy, actor)
    return _policy_to_response(supplier_id, saved)

# ============================================================================
# OPERATOR ENDPOINTS
# ============================================================================

@app.get("/api/admin/release-anomalies", response_model=List[BookingResponse], tags=["Operator"])
async def get_release_anomalies(
    machine: BookingStateMachine = Depends(get_booking_state_machine),
    operator: Actor = Depends(require_operator)
):
    """Cancelled or completed bookings whose date was never given back"""
    bookings = await machine.find_release_anomalies()
    return [_booking_to_response(b) for b in bookings]

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _result_to_response(result: CancellationResult) -> CancellationResultResponse:
    """Convert CancellationResult to CancellationResultResponse"""
    return CancellationResultResponse(
        paid_amount=result.paid_amount,
        refund_amount=result.refund_amount,
        platform_fee=result.platform_fee,
        supplier_payout=result.supplier_payout,
        forfeited_amount=result.forfeited_amount,
        refund_percentage=result.refund_percentage,
        days_to_event=result.days_to_event,
        message=result.message
    )

def _booking_to_response(booking: Booking, flags: Optional[UiFlags] = None) -> BookingResponse:
    """Convert Booking entity to BookingResponse"""
    return BookingResponse(
        booking_id=booking.id,
        client_id=booking.client_id,
        supplier_id=booking.supplier_id,
        package_id=booking.package_id,
        event_name=booking.event_name,
        event_date=booking.event_date,
        event_time=booking.event_time,
        event_location=booking.event_location,
        guest_count=booking.guest_count,
        total_price=booking.total_price,
        paid_amount=booking.paid_amount,
        remaining_amount=booking.remaining_amount,
        currency=booking.currency,
        selected_customizations=booking.selected_customizations,
        status=booking.status.value,
        slot_released=booking.slot_released,
        cancellation=_result_to_response(booking.cancellation.result) if booking.cancellation else None,
        status_history=[
            StatusChangeResponse(
                from_status=change.from_status.value if change.from_status else None,
                to_status=change.to_status.value,
                actor_id=change.actor_id,
                actor_role=change.actor_role.value,
                reason=change.reason,
                changed_at=change.changed_at
            )
            for change in booking.status_history
        ],
        created_at=booking.created_at,
        updated_at=booking.updated_at,
        confirmed_at=booking.confirmed_at,
        started_at=booking.started_at,
        completed_at=booking.completed_at,
        cancelled_at=booking.cancelled_at,
        disputed_at=booking.disputed_at,
        refunded_at=booking.refunded_at,
        version=booking.version,
        ui_flags=UiFlagsResponse(**flags.model_dump()) if flags else None
    )

def _slot_to_response(slot: AvailabilitySlot) -> SlotResponse:
    """Convert AvailabilitySlot entity to SlotResponse"""
    return SlotResponse(
        supplier_id=slot.supplier_id,
        slot_date=slot.slot_date,
        capacity=slot.capacity,
        booked_count=slot.booked_count,
        remaining_capacity=slot.remaining_capacity,
        blocked=slot.blocked,
        block_reason=slot.block_reason,
        state=slot.state,
        is_available=slot.is_available,
        last_updated=slot.last_updated,
        version=slot.version
    )

def _policy_to_response(supplier_id: str, policy: CancellationPolicy) -> CancellationPolicyResponse:
    """Convert CancellationPolicy to CancellationPolicyResponse"""
    return CancellationPolicyResponse(
        supplier_id=supplier_id,
        name=policy.name,
        tiers=[
            RefundTierSchema(days_before_event=tier.days_before_event, refund_percentage=tier.refund_percentage)
            for tier in policy.tiers
        ],
        platform_fee_percentage=policy.platform_fee_percentage
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
