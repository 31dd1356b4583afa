"""Application Services - Business use cases"""
import asyncio
import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Tuple, TypeVar, Union

from domain.entities import AvailabilitySlot, Booking, utcnow
from domain.enums import ActorRole, BookingStatus
from domain.errors import (
    BookingNotFound,
    PermissionDenied,
    SlotUnavailable,
    StorageConflict,
    ValidationError,
)
from domain.repositories import AvailabilityRepository, BookingRepository, CancellationPolicyRepository
from domain.settlement import DEFAULT_CANCELLATION_POLICY, compute_preview
from domain.state_machine import as_calendar_date, ensure_participant, ensure_role_may_request
from domain.ui_flags import UiFlags, project_ui_flags
from domain.value_objects import Actor, BookingRequest, CancellationPolicy, CancellationResult
from infrastructure.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]


async def with_conflict_retry(
    op_name: str,
    func: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 5,
) -> T:
    """Re-run a read-modify-write cycle while a concurrent writer wins the race"""
    attempt = 1
    while True:
        try:
            return await func()
        except StorageConflict as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "Concurrent update retries exhausted",
                    extra={"event": "conflict_retry_exhausted", "op": op_name, "attempt": attempt},
                )
                raise
            logger.info(
                "Concurrent update detected, retrying",
                extra={"event": "conflict_retry", "op": op_name, "attempt": attempt, "error": str(exc)},
            )
            # let the competing writer finish before reading again
            await asyncio.sleep(0)
            attempt += 1


class AvailabilityLedger:
    """Service owning per-supplier, per-date capacity"""

    def __init__(self, repository: AvailabilityRepository, settings: Settings):
        self.repository = repository
        self.settings = settings

    def _new_slot(self, supplier_id: str, slot_date: date) -> AvailabilitySlot:
        return AvailabilitySlot(
            supplier_id=supplier_id,
            slot_date=slot_date,
            capacity=self.settings.default_capacity,
        )

    async def _mutate(
        self,
        op_name: str,
        supplier_id: str,
        slot_date: date,
        change: Callable[[AvailabilitySlot], bool],
        create_missing: bool = True
    ) -> AvailabilitySlot:
        """Apply `change` to the current slot and write it back only if it changed"""

        async def attempt() -> AvailabilitySlot:
            stored = await self.repository.find_by_supplier_and_date(supplier_id, slot_date)
            if stored is None and not create_missing:
                return self._new_slot(supplier_id, slot_date)
            slot = stored if stored is not None else self._new_slot(supplier_id, slot_date)
            expected_version = slot.version
            if not change(slot):
                return slot
            if stored is None:
                return await self.repository.insert(slot)
            return await self.repository.update(slot, expected_version)

        return await with_conflict_retry(op_name, attempt, max_attempts=self.settings.max_conflict_retries)

    async def get_slot(self, supplier_id: str, slot_date: date) -> AvailabilitySlot:
        """Get the slot for a supplier and date; untouched dates are open at default capacity"""
        slot_date = as_calendar_date(slot_date)
        slot = await self.repository.find_by_supplier_and_date(supplier_id, slot_date)
        return slot if slot is not None else self._new_slot(supplier_id, slot_date)

    async def reserve(self, supplier_id: str, slot_date: date, booking_id: Optional[str] = None) -> AvailabilitySlot:
        """Take one unit of capacity; raises SlotUnavailable when blocked or full"""
        slot_date = as_calendar_date(slot_date)
        try:
            slot = await self._mutate(
                "reserve", supplier_id, slot_date,
                lambda slot: slot.reserve(booking_id),
            )
        except SlotUnavailable as e:
            logger.info(
                "Slot unavailable",
                extra={"supplier_id": supplier_id, "date": str(slot_date), "reason": e.details.get("reason")},
            )
            raise
        logger.info(
            "Slot reserved",
            extra={"supplier_id": supplier_id, "date": str(slot_date), "booking_id": booking_id,
                   "booked_count": slot.booked_count, "capacity": slot.capacity},
        )
        return slot

    async def release(self, supplier_id: str, slot_date: date, booking_id: Optional[str] = None) -> AvailabilitySlot:
        """Give back one unit of capacity; releasing twice is a no-op"""
        slot_date = as_calendar_date(slot_date)
        slot = await self._mutate(
            "release", supplier_id, slot_date,
            lambda slot: slot.release(booking_id),
            create_missing=False,
        )
        logger.info(
            "Slot released",
            extra={"supplier_id": supplier_id, "date": str(slot_date), "booking_id": booking_id,
                   "booked_count": slot.booked_count},
        )
        return slot

    async def set_blocked(
        self,
        supplier_id: str,
        slot_date: date,
        blocked: bool,
        reason: Optional[str] = None
    ) -> AvailabilitySlot:
        """Block or unblock a date for a supplier, leaving existing bookings alone"""
        slot_date = as_calendar_date(slot_date)

        def change(slot: AvailabilitySlot) -> bool:
            slot.set_blocked(blocked, reason)
            return True

        slot = await self._mutate("set_blocked", supplier_id, slot_date, change)
        logger.info(
            "Slot block updated",
            extra={"supplier_id": supplier_id, "date": str(slot_date), "blocked": blocked},
        )
        return slot

    async def set_capacity(self, supplier_id: str, slot_date: date, capacity: int) -> AvailabilitySlot:
        """Change how many bookings a supplier accepts on a date"""
        slot_date = as_calendar_date(slot_date)

        def change(slot: AvailabilitySlot) -> bool:
            slot.set_capacity(capacity)
            return True

        return await self._mutate("set_capacity", supplier_id, slot_date, change)

    async def list_blocked_dates(self, supplier_id: str, from_date: date, to_date: date) -> List[date]:
        """Blocked dates between two dates, inclusive and ascending"""
        if from_date > to_date:
            raise ValidationError(
                "from_date must not be after to_date",
                details={"from_date": str(from_date), "to_date": str(to_date)},
            )
        slots = await self.repository.find_blocked_in_range(supplier_id, from_date, to_date)
        return [slot.slot_date for slot in slots]


class ConflictResolver:
    """Service creating bookings without double-booking a supplier's date"""

    def __init__(
        self,
        booking_repo: BookingRepository,
        ledger: AvailabilityLedger,
        settings: Settings,
        clock: Clock = utcnow
    ):
        self.booking_repo = booking_repo
        self.ledger = ledger
        self.settings = settings
        self.clock = clock

    @staticmethod
    def _replay(existing: Booking, client_id: str) -> Booking:
        """An existing booking answers a retry only for the client who created it"""
        if existing.client_id != client_id:
            logger.info("Booking id already used by another client", extra={"booking_id": existing.id})
            raise PermissionDenied("This booking id is already in use", details={"field": "booking_id"})
        logger.info("Booking already exists, returning it", extra={"booking_id": existing.id})
        return existing

    async def create_booking(self, request: Union[BookingRequest, Mapping[str, Any]]) -> Booking:
        """Reserve the date and persist a pending booking, or fail with nothing held"""
        if not isinstance(request, BookingRequest):
            request = BookingRequest.parse(request)

        if request.booking_id:
            existing = await self.booking_repo.find_by_id(request.booking_id)
            if existing is not None:
                return self._replay(existing, request.client_id)

        now = self.clock()
        booking = Booking.create(
            client_id=request.client_id,
            supplier_id=request.supplier_id,
            package_id=request.package_id,
            event_name=request.event_name,
            event_date=request.event_date,
            event_location=request.event_location,
            guest_count=request.guest_count,
            total_price=request.total_price,
            today=now.date(),
            now=now,
            event_time=request.event_time,
            currency=request.currency or self.settings.default_currency,
            selected_customizations=request.selected_customizations,
            booking_id=request.booking_id,
        )

        await self.ledger.reserve(booking.supplier_id, booking.event_date, booking.id)
        try:
            await self.booking_repo.insert(booking)
        except StorageConflict:
            existing = await self.booking_repo.find_by_id(booking.id)
            if existing is None or not request.booking_id:
                await self.ledger.release(booking.supplier_id, booking.event_date, booking.id)
                raise
            if (existing.supplier_id, existing.event_date) != (booking.supplier_id, booking.event_date):
                await self.ledger.release(booking.supplier_id, booking.event_date, booking.id)
            return self._replay(existing, request.client_id)
        except Exception:
            await self.ledger.release(booking.supplier_id, booking.event_date, booking.id)
            logger.exception("Booking insert failed, slot given back", extra={"booking_id": booking.id})
            raise

        logger.info(
            "Booking created",
            extra={"booking_id": booking.id, "client_id": booking.client_id,
                   "supplier_id": booking.supplier_id, "event_date": str(booking.event_date)},
        )
        return booking


class BookingStateMachine:
    """Service applying status changes, cancellations and payments"""

    def __init__(
        self,
        booking_repo: BookingRepository,
        ledger: AvailabilityLedger,
        policy_repo: CancellationPolicyRepository,
        settings: Settings,
        clock: Clock = utcnow
    ):
        self.booking_repo = booking_repo
        self.ledger = ledger
        self.policy_repo = policy_repo
        self.settings = settings
        self.clock = clock

    async def _retry(self, op_name: str, func: Callable[[], Awaitable[T]]) -> T:
        return await with_conflict_retry(op_name, func, max_attempts=self.settings.max_conflict_retries)

    # ==================== QUERIES ====================
    async def get_booking(self, booking_id: str) -> Booking:
        """Get booking by ID"""
        booking = await self.booking_repo.find_by_id(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    async def get_booking_for(self, booking_id: str, actor: Actor) -> Booking:
        """Get booking by ID, visible only to its parties and operators"""
        booking = await self.get_booking(booking_id)
        ensure_participant(booking, actor)
        return booking

    async def list_bookings_for_client(self, client_id: str) -> List[Booking]:
        bookings = await self.booking_repo.find_by_client_id(client_id)
        return sorted(bookings, key=lambda b: b.created_at)

    async def list_bookings_for_supplier(self, supplier_id: str) -> List[Booking]:
        bookings = await self.booking_repo.find_by_supplier_id(supplier_id)
        return sorted(bookings, key=lambda b: (b.event_date, b.created_at))

    def ui_flags(self, booking: Booking, has_pending_dispute: bool = False, has_review: bool = False) -> UiFlags:
        """Capability flags for the booking as of now"""
        return project_ui_flags(
            booking,
            today=self.clock().date(),
            has_pending_dispute=has_pending_dispute,
            has_review=has_review,
            dispute_window_days=self.settings.dispute_window_days,
        )

    async def find_release_anomalies(self) -> List[Booking]:
        """Cancelled or completed bookings whose slot is still held"""
        return await self.booking_repo.find_needing_slot_release()

    # ==================== CANCELLATION POLICY ====================
    async def get_policy(self, supplier_id: str) -> CancellationPolicy:
        """Supplier's cancellation policy, or the platform default"""
        policy = await self.policy_repo.find_by_supplier_id(supplier_id)
        return policy if policy is not None else DEFAULT_CANCELLATION_POLICY

    async def set_policy(self, supplier_id: str, policy: CancellationPolicy, actor: Actor) -> CancellationPolicy:
        """Replace a supplier's policy; applies to cancellations from now on"""
        if actor.role != ActorRole.OPERATOR and (
            actor.role != ActorRole.SUPPLIER or actor.supplier_id != supplier_id
        ):
            raise PermissionDenied(
                "Only the supplier or an operator can change this cancellation policy",
                details={"supplier_id": supplier_id},
            )
        saved = await self.policy_repo.save(supplier_id, policy)
        logger.info("Cancellation policy updated", extra={"supplier_id": supplier_id, "policy": policy.name})
        return saved

    # ==================== COMMANDS ====================
    async def transition(
        self,
        booking_id: str,
        target: Union[BookingStatus, str],
        actor: Actor,
        reason: Optional[str] = None
    ) -> Booking:
        """Move a booking to `target`; repeating the current status is a no-op"""
        try:
            target = BookingStatus(target)
        except ValueError as e:
            raise ValidationError(f"Unknown booking status: {target}", details={"field": "target_status"}) from e

        if target == BookingStatus.CANCELLED:
            _, booking = await self.cancel(booking_id, actor, reason)
            return booking

        async def attempt() -> Tuple[Booking, bool]:
            booking = await self.get_booking(booking_id)
            if booking.status == target:
                ensure_participant(booking, actor)
                ensure_role_may_request(target, actor.role)
                return booking, False
            expected_version = booking.version
            from_status = booking.status
            booking.transition_to(target, actor, self.clock(), self.settings.dispute_window_days, reason)
            booking = await self.booking_repo.update(booking, expected_version)
            logger.info(
                "Booking status changed",
                extra={"booking_id": booking.id, "from": from_status.value, "to": target.value,
                       "actor_id": actor.user_id, "actor_role": actor.role.value},
            )
            return booking, True

        booking, changed = await self._retry("transition", attempt)
        if not changed:
            logger.info("Booking already in requested status", extra={"booking_id": booking.id, "status": target.value})
        if booking.needs_slot_release():
            booking = await self._release_slot(booking)
        return booking

    async def preview_cancellation(
        self,
        booking_id: str,
        requested_by_role: Optional[ActorRole] = None,
        actor: Optional[Actor] = None
    ) -> CancellationResult:
        """What cancelling now would pay out; changes nothing"""
        booking = await self.get_booking(booking_id)
        if actor is not None:
            ensure_participant(booking, actor)
        if booking.cancellation is not None:
            return booking.cancellation.result
        policy = await self.get_policy(booking.supplier_id)
        return compute_preview(booking, policy, self.clock(), requested_by_role)

    async def cancel(
        self,
        booking_id: str,
        actor: Actor,
        reason: Optional[str] = None
    ) -> Tuple[CancellationResult, Booking]:
        """Cancel a booking, store its settlement and give the date back"""

        async def attempt() -> Tuple[CancellationResult, Booking]:
            booking = await self.get_booking(booking_id)
            if booking.status == BookingStatus.CANCELLED and booking.cancellation is not None:
                ensure_participant(booking, actor)
                logger.info("Booking already cancelled", extra={"booking_id": booking.id})
                return booking.cancellation.result, booking

            policy = await self.get_policy(booking.supplier_id)
            now = self.clock()
            result = compute_preview(booking, policy, now, actor.role)
            expected_version = booking.version
            booking.cancel(actor, result, now, self.settings.dispute_window_days, reason)
            booking = await self.booking_repo.update(booking, expected_version)
            logger.info(
                "Booking cancelled",
                extra={"booking_id": booking.id, "actor_id": actor.user_id, "actor_role": actor.role.value,
                       "refund_amount": result.refund_amount, "platform_fee": result.platform_fee,
                       "supplier_payout": result.supplier_payout},
            )
            return result, booking

        result, booking = await self._retry("cancel", attempt)
        if booking.needs_slot_release():
            booking = await self._release_slot(booking)
        return result, booking

    async def record_payment(self, booking_id: str, amount: int, actor: Actor) -> Booking:
        """Add a client payment to the booking's paid amount"""

        async def attempt() -> Booking:
            booking = await self.get_booking(booking_id)
            expected_version = booking.version
            booking.record_payment(amount, actor, self.clock())
            return await self.booking_repo.update(booking, expected_version)

        booking = await self._retry("record_payment", attempt)
        logger.info(
            "Payment recorded",
            extra={"booking_id": booking.id, "amount": amount, "paid_amount": booking.paid_amount},
        )
        return booking

    # ==================== PRIVATE METHODS ====================
    async def _release_slot(self, booking: Booking) -> Booking:
        """Release the ledger first, then record that the release happened"""
        await self.ledger.release(booking.supplier_id, booking.event_date, booking.id)

        async def attempt() -> Booking:
            current = await self.get_booking(booking.id)
            if current.slot_released:
                return current
            expected_version = current.version
            current.mark_slot_released(self.clock())
            return await self.booking_repo.update(current, expected_version)

        return await self._retry("mark_slot_released", attempt)
