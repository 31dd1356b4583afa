"""In-Memory Repository Implementations

Entities are copied on the way in and out, so callers never mutate stored
state directly. The version check and the write in `insert`/`update` run
without awaiting, which makes them atomic for coroutines on the same event loop.
"""
import logging
from typing import Optional, List, Dict, Tuple
from datetime import date

from domain.errors import StorageConflict
from domain.repositories import BookingRepository, AvailabilityRepository, CancellationPolicyRepository
from domain.entities import Booking, AvailabilitySlot
from domain.state_machine import SLOT_RELEASING_STATUSES
from domain.value_objects import CancellationPolicy

logger = logging.getLogger(__name__)


class InMemoryBookingRepository(BookingRepository):
    """In-memory implementation of BookingRepository"""

    def __init__(self):
        self._storage: Dict[str, Booking] = {}

    async def insert(self, booking: Booking) -> Booking:
        """Save booking to memory"""
        if booking.id in self._storage:
            raise StorageConflict("Booking already exists", details={"booking_id": booking.id})
        self._storage[booking.id] = booking.model_copy(deep=True)
        return booking

    async def find_by_id(self, booking_id: str) -> Optional[Booking]:
        """Find booking by ID"""
        booking = self._storage.get(booking_id)
        return booking.model_copy(deep=True) if booking else None

    async def find_by_client_id(self, client_id: str) -> List[Booking]:
        """Find bookings by client ID"""
        return [b.model_copy(deep=True) for b in self._storage.values() if b.client_id == client_id]

    async def find_by_supplier_id(self, supplier_id: str) -> List[Booking]:
        """Find bookings by supplier ID"""
        return [b.model_copy(deep=True) for b in self._storage.values() if b.supplier_id == supplier_id]

    async def find_needing_slot_release(self) -> List[Booking]:
        return [
            b.model_copy(deep=True) for b in self._storage.values()
            if b.status in SLOT_RELEASING_STATUSES and not b.slot_released
        ]

    async def update(self, booking: Booking, expected_version: int) -> Booking:
        """Update booking if nobody changed it since it was read"""
        stored = self._storage.get(booking.id)
        if stored is None:
            raise StorageConflict("Booking not found", details={"booking_id": booking.id})
        if stored.version != expected_version:
            logger.info(
                "booking_version_conflict",
                extra={"booking_id": booking.id, "expected": expected_version, "actual": stored.version},
            )
            raise StorageConflict(
                "Booking was modified concurrently",
                details={"booking_id": booking.id, "expected_version": expected_version},
            )
        self._storage[booking.id] = booking.model_copy(deep=True)
        return booking


class InMemoryAvailabilityRepository(AvailabilityRepository):
    """In-memory implementation of AvailabilityRepository"""

    def __init__(self):
        self._storage: Dict[Tuple[str, date], AvailabilitySlot] = {}

    async def insert(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        """Save slot to memory"""
        key = (slot.supplier_id, slot.slot_date)
        if key in self._storage:
            raise StorageConflict(
                "Availability slot already exists",
                details={"supplier_id": slot.supplier_id, "date": str(slot.slot_date)},
            )
        self._storage[key] = slot.model_copy(deep=True)
        return slot

    async def find_by_supplier_and_date(self, supplier_id: str, slot_date: date) -> Optional[AvailabilitySlot]:
        """Find slot for specific supplier and date"""
        slot = self._storage.get((supplier_id, slot_date))
        return slot.model_copy(deep=True) if slot else None

    async def find_blocked_in_range(self, supplier_id: str, from_date: date, to_date: date) -> List[AvailabilitySlot]:
        """Find blocked slots for date range"""
        results = [
            slot.model_copy(deep=True)
            for (s_id, d), slot in self._storage.items()
            if s_id == supplier_id and from_date <= d <= to_date and slot.blocked
        ]
        return sorted(results, key=lambda s: s.slot_date)

    async def update(self, slot: AvailabilitySlot, expected_version: int) -> AvailabilitySlot:
        """Update slot if nobody changed it since it was read"""
        key = (slot.supplier_id, slot.slot_date)
        stored = self._storage.get(key)
        if stored is None or stored.version != expected_version:
            raise StorageConflict(
                "Availability slot was modified concurrently",
                details={"supplier_id": slot.supplier_id, "date": str(slot.slot_date)},
            )
        self._storage[key] = slot.model_copy(deep=True)
        return slot


class InMemoryCancellationPolicyRepository(CancellationPolicyRepository):
    """In-memory implementation of CancellationPolicyRepository"""

    def __init__(self):
        self._storage: Dict[str, CancellationPolicy] = {}

    async def find_by_supplier_id(self, supplier_id: str) -> Optional[CancellationPolicy]:
        return self._storage.get(supplier_id)

    async def save(self, supplier_id: str, policy: CancellationPolicy) -> CancellationPolicy:
        self._storage[supplier_id] = policy
        return policy
