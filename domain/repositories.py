"""Domain Repository and Collaborator Interfaces"""
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Iterable
from uuid import UUID

from domain.entities import Reservation, ReservationEvent
from domain.enums import ReservationStatus
from domain.value_objects import RentalPeriod


class ReservationRepository(ABC):
    """Repository interface for Reservation Aggregate

    Implementations hand out copies: callers mutate their copy and commit it
    back through `replace`, which only succeeds when the stored version still
    matches the one the caller read.
    """

    @abstractmethod
    def lock_resource(self, resource_id: str, timeout: Optional[float] = None) -> AbstractAsyncContextManager:
        """Resource-scoped lock spanning a read-modify-write unit"""
        pass

    @abstractmethod
    async def add(self, reservation: Reservation) -> Reservation:
        """Insert reservation; raises IntervalConflictError if a live reservation overlaps"""
        pass

    @abstractmethod
    async def replace(self, reservation: Reservation, expected_version: int) -> Reservation:
        """Compare-and-swap update; raises InvalidTransitionError on a version mismatch"""
        pass

    @abstractmethod
    async def delete_if_status(self, reservation_id: UUID, expected_version: int,
                               allowed_statuses: Iterable[ReservationStatus]) -> bool:
        """Delete reservation only if it is unchanged and in one of the allowed statuses"""
        pass

    @abstractmethod
    async def find_by_id(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID"""
        pass

    @abstractmethod
    async def find_by_requester_id(self, requester_id: UUID, status: Optional[ReservationStatus] = None,
                                   as_of: Optional[datetime] = None, offset: int = 0,
                                   limit: Optional[int] = None) -> List[Reservation]:
        """Find reservations by requester ID, newest first

        `status` is matched against the status as seen at `as_of`, so OVERDUE
        selects active rentals past their end and ACTIVE excludes them.
        """
        pass

    @abstractmethod
    async def count_by_requester_id(self, requester_id: UUID, status: Optional[ReservationStatus] = None,
                                    as_of: Optional[datetime] = None) -> int:
        pass

    @abstractmethod
    async def holds_availability_flag(self, resource_id: str) -> bool:
        """Whether any reservation of the resource still holds its catalog flag at false"""
        pass

    @abstractmethod
    async def find_by_resource(self, resource_id: str, period: Optional[RentalPeriod] = None) -> List[Reservation]:
        """Find reservations of a resource, optionally only those overlapping `period`"""
        pass

    @abstractmethod
    async def find_live_overlapping(self, resource_id: str, period: RentalPeriod,
                                    exclude_id: Optional[UUID] = None) -> List[Reservation]:
        """Find live reservations of a resource overlapping `period`"""
        pass


class ResourceCatalog(ABC):
    """Fleet catalog collaborator: daily price and the coarse availability flag"""

    @abstractmethod
    async def get_price(self, resource_id: str) -> Decimal:
        pass

    @abstractmethod
    async def get_availability_flag(self, resource_id: str) -> bool:
        pass

    @abstractmethod
    async def set_availability_flag(self, resource_id: str, available: bool) -> None:
        pass


class HistoryProjector(ABC):
    """Requester-side system of record fed after every transition"""

    @abstractmethod
    async def record(self, event: ReservationEvent) -> None:
        pass
