"""In-Memory Repository Implementations"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Iterable
from uuid import UUID

from domain.repositories import ReservationRepository, ResourceCatalog, HistoryProjector
from domain.entities import Reservation, ReservationEvent, Resource, utc_now
from domain.enums import ReservationStatus
from domain.exceptions import (
    IntervalConflictError, InvalidTransitionError, NotFoundError, ReservationValidationError,
    StoreUnavailableError
)
from domain.value_objects import RentalPeriod

logger = logging.getLogger(__name__)


class InMemoryReservationRepository(ReservationRepository):
    """In-memory implementation of ReservationRepository

    Writes are serialized by a store-wide lock and enforce the exclusion
    constraint themselves, so a racing insert of an overlapping live
    reservation is rejected even if a caller skipped the resource lock.
    """

    def __init__(self):
        self._storage: Dict[UUID, Reservation] = {}
        self._lock = asyncio.Lock()
        self._resource_locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def lock_resource(self, resource_id: str, timeout: Optional[float] = None):
        """Hold the resource-scoped lock for the duration of the block"""
        lock = self._resource_locks.setdefault(resource_id, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise StoreUnavailableError(f"Timed out waiting for the lock on resource {resource_id}")
        try:
            yield
        finally:
            lock.release()

    async def add(self, reservation: Reservation) -> Reservation:
        """Save reservation to memory"""
        async with self._lock:
            if reservation.reservation_id in self._storage:
                raise ReservationValidationError(f"Reservation {reservation.reservation_id} already exists")
            if reservation.is_live() and self._overlapping(reservation.resource_id, reservation.period,
                                                           exclude_id=reservation.reservation_id):
                raise IntervalConflictError(
                    f"Resource {reservation.resource_id} is already booked for the selected period"
                )
            self._storage[reservation.reservation_id] = reservation.model_copy(deep=True)
        return reservation.model_copy(deep=True)

    async def replace(self, reservation: Reservation, expected_version: int) -> Reservation:
        """Update reservation if nobody changed it since it was read"""
        async with self._lock:
            current = self._storage.get(reservation.reservation_id)
            if current is None:
                raise NotFoundError("Reservation not found")
            if current.version != expected_version:
                raise InvalidTransitionError(
                    "Reservation was modified concurrently; re-read it and retry"
                )
            if reservation.is_live() and self._overlapping(reservation.resource_id, reservation.period,
                                                           exclude_id=reservation.reservation_id):
                raise IntervalConflictError(
                    f"Resource {reservation.resource_id} is already booked for the selected period"
                )
            self._storage[reservation.reservation_id] = reservation.model_copy(deep=True)
        return reservation.model_copy(deep=True)

    async def delete_if_status(self, reservation_id: UUID, expected_version: int,
                               allowed_statuses: Iterable[ReservationStatus]) -> bool:
        """Delete reservation"""
        allowed = set(allowed_statuses)
        async with self._lock:
            current = self._storage.get(reservation_id)
            if current is None:
                return False
            if current.version != expected_version or current.status not in allowed:
                raise InvalidTransitionError(
                    "Reservation was modified concurrently; re-read it and retry"
                )
            del self._storage[reservation_id]
            return True

    async def find_by_id(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID"""
        reservation = self._storage.get(reservation_id)
        return reservation.model_copy(deep=True) if reservation else None

    async def find_by_requester_id(self, requester_id: UUID, status: Optional[ReservationStatus] = None,
                                   as_of: Optional[datetime] = None, offset: int = 0,
                                   limit: Optional[int] = None) -> List[Reservation]:
        """Find reservations by requester ID, newest first"""
        found = sorted(self._by_requester(requester_id, status, as_of), key=lambda r: r.created_at, reverse=True)
        end = None if limit is None else offset + limit
        return [r.model_copy(deep=True) for r in found[offset:end]]

    async def count_by_requester_id(self, requester_id: UUID, status: Optional[ReservationStatus] = None,
                                    as_of: Optional[datetime] = None) -> int:
        return len(self._by_requester(requester_id, status, as_of))

    async def holds_availability_flag(self, resource_id: str) -> bool:
        return any(
            r.holds_availability_flag() for r in self._storage.values() if r.resource_id == resource_id
        )

    async def find_by_resource(self, resource_id: str, period: Optional[RentalPeriod] = None) -> List[Reservation]:
        """Find reservations of a resource"""
        found = [
            r for r in self._storage.values()
            if r.resource_id == resource_id and (period is None or r.period.overlaps(period))
        ]
        return [r.model_copy(deep=True) for r in sorted(found, key=lambda r: r.period.start)]

    async def find_live_overlapping(self, resource_id: str, period: RentalPeriod,
                                    exclude_id: Optional[UUID] = None) -> List[Reservation]:
        """Find live reservations overlapping a period"""
        return [r.model_copy(deep=True) for r in self._overlapping(resource_id, period, exclude_id)]

    def _by_requester(self, requester_id: UUID, status: Optional[ReservationStatus],
                      as_of: Optional[datetime]) -> List[Reservation]:
        found = [r for r in self._storage.values() if r.requester_id == requester_id]
        if status is None:
            return found
        now = as_of or utc_now()
        return [r for r in found if r.effective_status(now) == status]

    def _overlapping(self, resource_id: str, period: RentalPeriod,
                     exclude_id: Optional[UUID] = None) -> List[Reservation]:
        return [
            r for r in self._storage.values()
            if r.resource_id == resource_id
            and r.reservation_id != exclude_id
            and r.is_live()
            and r.period.overlaps(period)
        ]


class InMemoryResourceCatalog(ResourceCatalog):
    """In-memory stand-in for the fleet catalog"""

    def __init__(self):
        self._resources: Dict[str, Resource] = {}

    def add_resource(self, resource_id: str, price_per_day: Decimal, is_available: bool = True) -> Resource:
        """Register a car with the catalog"""
        resource = Resource(resource_id=resource_id, price_per_day=price_per_day, is_available=is_available)
        self._resources[resource_id] = resource
        return resource

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        resource = self._resources.get(resource_id)
        return resource.model_copy() if resource else None

    async def get_price(self, resource_id: str) -> Decimal:
        return self._require(resource_id).price_per_day

    async def get_availability_flag(self, resource_id: str) -> bool:
        return self._require(resource_id).is_available

    async def set_availability_flag(self, resource_id: str, available: bool) -> None:
        resource = self._require(resource_id)
        resource.is_available = available
        logger.debug("Resource %s availability flag set to %s", resource_id, available)

    def _require(self, resource_id: str) -> Resource:
        resource = self._resources.get(resource_id)
        if resource is None:
            raise NotFoundError(f"Resource {resource_id} not found")
        return resource


class InMemoryHistoryProjector(HistoryProjector):
    """Keeps a per-requester rental history built from transition events"""

    def __init__(self):
        self._events: Dict[UUID, List[ReservationEvent]] = {}

    async def record(self, event: ReservationEvent) -> None:
        self._events.setdefault(event.requester_id, []).append(event)

    def find_by_requester_id(self, requester_id: UUID) -> List[ReservationEvent]:
        return list(self._events.get(requester_id, []))

    def latest_status(self, requester_id: UUID, reservation_id: UUID) -> Optional[ReservationStatus]:
        """Most recent status the projector saw for a reservation"""
        for event in reversed(self._events.get(requester_id, [])):
            if event.reservation_id == reservation_id:
                return event.new_status
        return None
