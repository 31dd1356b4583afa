"""Domain Repository Interfaces

Writes are conditional: `update` succeeds only when the stored version still
equals `expected_version`, otherwise it raises StorageConflict. `insert` fails
with StorageConflict when the key is already taken.
"""
from abc import ABC, abstractmethod
from typing import Optional, List
from datetime import date

from domain.entities import Booking, AvailabilitySlot
from domain.value_objects import CancellationPolicy


class BookingRepository(ABC):
    """Repository interface for Booking Aggregate"""

    @abstractmethod
    async def insert(self, booking: Booking) -> Booking:
        """Store a new booking; StorageConflict if the id exists"""
        pass

    @abstractmethod
    async def find_by_id(self, booking_id: str) -> Optional[Booking]:
        """Find booking by ID"""
        pass

    @abstractmethod
    async def find_by_client_id(self, client_id: str) -> List[Booking]:
        """Find bookings made by a client"""
        pass

    @abstractmethod
    async def find_by_supplier_id(self, supplier_id: str) -> List[Booking]:
        """Find bookings made with a supplier"""
        pass

    @abstractmethod
    async def find_needing_slot_release(self) -> List[Booking]:
        """Find cancelled/completed bookings whose slot was never released"""
        pass

    @abstractmethod
    async def update(self, booking: Booking, expected_version: int) -> Booking:
        """Replace booking if the stored version matches"""
        pass


class AvailabilityRepository(ABC):
    """Repository interface for AvailabilitySlot Aggregate"""

    @abstractmethod
    async def insert(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        """Store a new slot; StorageConflict if one exists for the key"""
        pass

    @abstractmethod
    async def find_by_supplier_and_date(self, supplier_id: str, slot_date: date) -> Optional[AvailabilitySlot]:
        """Find slot for specific supplier and date"""
        pass

    @abstractmethod
    async def find_blocked_in_range(self, supplier_id: str, from_date: date, to_date: date) -> List[AvailabilitySlot]:
        """Find blocked slots between two dates, inclusive, ordered by date"""
        pass

    @abstractmethod
    async def update(self, slot: AvailabilitySlot, expected_version: int) -> AvailabilitySlot:
        """Replace slot if the stored version matches"""
        pass


class CancellationPolicyRepository(ABC):
    """Repository interface for supplier cancellation policies"""

    @abstractmethod
    async def find_by_supplier_id(self, supplier_id: str) -> Optional[CancellationPolicy]:
        pass

    @abstractmethod
    async def save(self, supplier_id: str, policy: CancellationPolicy) -> CancellationPolicy:
        pass
