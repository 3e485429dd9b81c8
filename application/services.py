"""Application Services - Business use cases"""
import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError

from config import settings
from domain.entities import Reservation, ReservationEvent, utc_now
from domain.enums import LIVE_STATUSES, ReservationStatus
from domain.exceptions import (
    AccessDeniedError, IntervalConflictError, NotFoundError, ReservationError,
    ReservationValidationError, ResourceUnavailableError, StoreUnavailableError
)
from domain.repositories import HistoryProjector, ReservationRepository, ResourceCatalog
from domain.value_objects import (
    Actor, AdditionalFees, CancellationPolicy, DriverInfo, InsuranceCoverage, PaymentInfo,
    PickupDetails, RentalPeriod, ReturnDetails, VehicleCondition
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

# Statuses a reservation may be deleted from
DELETABLE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CANCELLED)

DEFAULT_PAGE_SIZE = 10


def build_value(model_cls: Type[M], **fields) -> M:
    """Build a value object, reporting invalid fields as a domain error"""
    try:
        return model_cls(**fields)
    except ValidationError as e:
        raise ReservationValidationError(
            "; ".join(err["msg"] for err in e.errors())
        ) from e


def build_period(start: datetime, end: datetime) -> RentalPeriod:
    return build_value(RentalPeriod, start=start, end=end)


class ReservationPage(BaseModel):
    """One page of a requester's reservations, newest first"""
    results: List[Reservation]
    total: int
    page: int
    pages: int


class ConflictDetector:
    """Answers whether a live reservation already holds a resource for a period"""

    def __init__(self, repository: ReservationRepository):
        self.repository = repository

    async def has_conflict(self, resource_id: str, period: RentalPeriod,
                           exclude_id: Optional[UUID] = None) -> bool:
        overlapping = await self.repository.find_live_overlapping(resource_id, period, exclude_id)
        return len(overlapping) > 0


class ReservationService:
    """Reservation lifecycle engine

    The only writer of reservation status. Reserve runs under the resource
    lock (conflict check, insert and availability flag flip together); every
    other transition is a compare-and-swap on the reservation version.
    """

    def __init__(self,
                 repository: ReservationRepository,
                 catalog: ResourceCatalog,
                 history: Optional[HistoryProjector] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 store_timeout: Optional[float] = None,
                 currency: Optional[str] = None,
                 default_refund_percentage: Optional[Decimal] = None,
                 cancellation_deadline_hours: Optional[int] = None):
        self.repository = repository
        self.catalog = catalog
        self.history = history
        self.conflicts = ConflictDetector(repository)
        self.clock = clock or utc_now
        self.store_timeout = store_timeout if store_timeout is not None else settings.STORE_TIMEOUT_SECONDS
        self.currency = currency or settings.CURRENCY
        self.default_refund_percentage = (
            default_refund_percentage if default_refund_percentage is not None
            else settings.DEFAULT_REFUND_PERCENTAGE
        )
        self.cancellation_deadline_hours = (
            cancellation_deadline_hours if cancellation_deadline_hours is not None
            else settings.CANCELLATION_DEADLINE_HOURS
        )

    # ==================== RESERVE ====================
    async def reserve(
        self,
        actor: Actor,
        resource_id: str,
        start: datetime,
        end: datetime,
        pickup: PickupDetails,
        return_details: ReturnDetails,
        driver_info: DriverInfo,
        payment: PaymentInfo,
        additional_fees: Optional[AdditionalFees] = None,
        insurance: Optional[InsuranceCoverage] = None,
        cancellation_policy: Optional[CancellationPolicy] = None,
        pickup_condition: Optional[VehicleCondition] = None,
        special_requests: str = ""
    ) -> Reservation:
        """Book a resource for [start, end) on behalf of the actor"""
        period = build_period(start, end)

        async with self.repository.lock_resource(resource_id, timeout=self.store_timeout):
            price_per_day = await self._call(self.catalog.get_price(resource_id))

            if await self._call(self.conflicts.has_conflict(resource_id, period)):
                raise IntervalConflictError(
                    f"Resource {resource_id} is not available for the selected period"
                )

            # The flag is only a hint: a false flag explained by our own
            # bookings does not block a non-overlapping one
            if not await self._call(self.catalog.get_availability_flag(resource_id)):
                if not await self._flag_explained(resource_id):
                    raise ResourceUnavailableError(f"Resource {resource_id} is not available for rental")

            reservation = Reservation.create(
                resource_id=resource_id,
                requester_id=actor.user_id,
                period=period,
                price_per_day=price_per_day,
                pickup=pickup,
                return_details=return_details,
                driver_info=driver_info,
                payment=payment,
                now=self.clock(),
                currency=self.currency,
                additional_fees=additional_fees,
                insurance=insurance,
                cancellation_policy=cancellation_policy or self._default_policy(period),
                pickup_condition=pickup_condition,
                special_requests=special_requests
            )

            reservation = await self._call(self.repository.add(reservation))
            try:
                await self._call(self.catalog.set_availability_flag(resource_id, False))
            except (Exception, asyncio.CancelledError):
                await self._undo_insert(reservation)
                raise

        logger.info(
            "Reserved %s for %s from %s to %s (reservation %s, final amount %s)",
            resource_id, actor.user_id, period.start, period.end,
            reservation.reservation_id, reservation.final_amount
        )
        await self._publish(reservation)
        return reservation

    # ==================== QUERIES ====================
    async def get_reservation(self, actor: Actor, reservation_id: UUID) -> Reservation:
        """Get reservation by ID"""
        reservation = await self._load(reservation_id)
        self._require_owner_or_operator(actor, reservation)
        return reservation

    async def list_by_resource(
        self,
        actor: Actor,
        resource_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Reservation]:
        """Reservations of a resource, optionally only those overlapping [start, end)"""
        self._require_operator(actor, "list reservations of a resource")
        if (start is None) != (end is None):
            raise ReservationValidationError("Both start and end are required to filter by period")

        period = build_period(start, end) if start is not None else None
        return await self._call(self.repository.find_by_resource(resource_id, period))

    async def list_by_requester(
        self,
        actor: Actor,
        requester_id: UUID,
        status: Optional[ReservationStatus] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> ReservationPage:
        """A page of a requester's reservations, newest first

        The status filter sees OVERDUE the way reads report it: an active
        rental past its end matches OVERDUE and no longer matches ACTIVE.
        """
        if not actor.is_operator() and actor.user_id != requester_id:
            raise AccessDeniedError("Access denied")
        if page < 1 or limit < 1:
            raise ReservationValidationError("page and limit must be at least 1")

        as_of = self.clock()
        total = await self._call(self.repository.count_by_requester_id(requester_id, status, as_of))
        results = await self._call(self.repository.find_by_requester_id(
            requester_id, status, as_of, offset=(page - 1) * limit, limit=limit
        ))
        return ReservationPage(results=results, total=total, page=page, pages=(total + limit - 1) // limit)

    # ==================== MODIFICATION ====================
    async def modify_reservation(
        self,
        actor: Actor,
        reservation_id: UUID,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        additional_fees: Optional[AdditionalFees] = None,
        pickup: Optional[PickupDetails] = None,
        return_details: Optional[ReturnDetails] = None,
        insurance: Optional[InsuranceCoverage] = None,
        special_requests: Optional[str] = None,
        admin_notes: Optional[str] = None
    ) -> Reservation:
        """Modify details of a live reservation; pricing is recomputed"""
        if (additional_fees is not None or admin_notes is not None) and not actor.is_operator():
            raise AccessDeniedError("Only operators can change fees or admin notes")

        reservation = await self._load(reservation_id)
        self._require_owner_or_operator(actor, reservation)
        previous = reservation.model_copy(deep=True)

        new_period = None
        if start is not None or end is not None:
            new_period = build_period(start or reservation.period.start, end or reservation.period.end)

        async with self.repository.lock_resource(reservation.resource_id, timeout=self.store_timeout):
            if new_period is not None and await self._call(
                self.conflicts.has_conflict(reservation.resource_id, new_period, exclude_id=reservation_id)
            ):
                raise IntervalConflictError(
                    f"Resource {reservation.resource_id} is not available for the selected period"
                )

            reservation.modify(
                now=self.clock(),
                new_period=new_period,
                additional_fees=additional_fees,
                pickup=pickup,
                return_details=return_details,
                insurance=insurance,
                special_requests=special_requests,
                admin_notes=admin_notes
            )
            saved = await self._call(self.repository.replace(reservation, previous.version))

        logger.info("Modified reservation %s (final amount %s)", reservation_id, saved.final_amount)
        return saved

    # ==================== STATE TRANSITIONS ====================
    async def confirm_reservation(self, actor: Actor, reservation_id: UUID) -> Reservation:
        """Confirm a pending reservation"""
        self._require_operator(actor, "confirm reservations")
        reservation = await self._load(reservation_id)
        previous = reservation.model_copy(deep=True)

        reservation.confirm(self.clock())
        return await self._commit(previous, reservation)

    async def activate_reservation(
        self,
        actor: Actor,
        reservation_id: UUID,
        pickup_condition: Optional[VehicleCondition] = None
    ) -> Reservation:
        """Hand the car over; not before the rental start"""
        self._require_operator(actor, "activate reservations")
        reservation = await self._load(reservation_id)
        previous = reservation.model_copy(deep=True)

        reservation.activate(self.clock(), pickup_condition=pickup_condition)
        return await self._commit(previous, reservation)

    async def complete_reservation(
        self,
        actor: Actor,
        reservation_id: UUID,
        return_condition: Optional[VehicleCondition] = None,
        actual_return_at: Optional[datetime] = None
    ) -> Reservation:
        """Record the car's return and release it"""
        self._require_operator(actor, "complete reservations")
        reservation = await self._load(reservation_id)
        previous = reservation.model_copy(deep=True)

        reservation.complete(self.clock(), return_condition=return_condition, actual_return_at=actual_return_at)
        return await self._commit(previous, reservation, release_resource=True)

    async def cancel_reservation(self, actor: Actor, reservation_id: UUID, force: bool = False) -> Reservation:
        """Cancel reservation; the refund is stored on the returned record"""
        if force:
            self._require_operator(actor, "force-cancel reservations")

        reservation = await self._load(reservation_id)
        self._require_owner_or_operator(actor, reservation)
        previous = reservation.model_copy(deep=True)

        refund = reservation.cancel(self.clock(), force=force)
        release = previous.status in (ReservationStatus.CONFIRMED, ReservationStatus.ACTIVE)
        saved = await self._commit(previous, reservation, release_resource=release)

        logger.info("Refund of %s %s owed for reservation %s", refund.amount, refund.currency, reservation_id)
        return saved

    async def delete_reservation(self, actor: Actor, reservation_id: UUID) -> bool:
        """Delete a pending or cancelled reservation"""
        self._require_operator(actor, "delete reservations")
        reservation = await self._load(reservation_id)
        reservation.ensure_deletable()

        async with self.repository.lock_resource(reservation.resource_id, timeout=self.store_timeout):
            deleted = await self._call(
                self.repository.delete_if_status(reservation_id, reservation.version, DELETABLE_STATUSES)
            )
            if not deleted:
                raise NotFoundError("Reservation not found")

            if reservation.was_confirmed():
                try:
                    await self._call(self.catalog.set_availability_flag(reservation.resource_id, True))
                except (Exception, asyncio.CancelledError):
                    await self._undo_delete(reservation)
                    raise

        logger.info("Deleted reservation %s", reservation_id)
        return True

    # ==================== PRIVATE METHODS ====================
    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await a store or catalog call, giving up after the configured timeout"""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.store_timeout)
        except asyncio.TimeoutError:
            logger.warning("Store call timed out after %ss", self.store_timeout)
            raise StoreUnavailableError("Reservation store did not respond in time")

    async def _load(self, reservation_id: UUID) -> Reservation:
        reservation = await self._call(self.repository.find_by_id(reservation_id))
        if reservation is None:
            raise NotFoundError("Reservation not found")
        return reservation

    async def _flag_explained(self, resource_id: str) -> bool:
        """Whether a false availability flag was left by this engine's own bookings"""
        return await self._call(self.repository.holds_availability_flag(resource_id))

    async def _commit(self, previous: Reservation, updated: Reservation,
                      release_resource: bool = False) -> Reservation:
        """Conditionally write a transition, releasing the resource in the same unit"""
        async with self.repository.lock_resource(updated.resource_id, timeout=self.store_timeout):
            saved = await self._call(self.repository.replace(updated, previous.version))
            if release_resource:
                try:
                    await self._call(self.catalog.set_availability_flag(updated.resource_id, True))
                except (Exception, asyncio.CancelledError):
                    await self._undo_replace(previous, saved)
                    raise

        logger.info(
            "Reservation %s moved from %s to %s",
            saved.reservation_id, previous.status.value, saved.status.value
        )
        await self._publish(saved)
        return saved

    async def _undo_insert(self, reservation: Reservation) -> None:
        try:
            await self._call(self.repository.delete_if_status(
                reservation.reservation_id, reservation.version, LIVE_STATUSES
            ))
        except ReservationError:
            logger.exception("Could not roll back reservation %s", reservation.reservation_id)

    async def _undo_replace(self, previous: Reservation, saved: Reservation) -> None:
        try:
            restored = previous.model_copy(deep=True, update={"version": saved.version + 1})
            await self._call(self.repository.replace(restored, saved.version))
        except ReservationError:
            logger.exception("Could not roll back transition of reservation %s", saved.reservation_id)

    async def _undo_delete(self, reservation: Reservation) -> None:
        try:
            await self._call(self.repository.add(reservation))
        except ReservationError:
            logger.exception("Could not restore deleted reservation %s", reservation.reservation_id)

    async def _publish(self, reservation: Reservation) -> None:
        """Feed the history projector; a committed transition is never undone by its failure"""
        if self.history is None:
            return
        try:
            await self._call(self.history.record(ReservationEvent.from_reservation(reservation, self.clock())))
        except Exception:
            logger.exception("History projector failed for reservation %s", reservation.reservation_id)

    def _default_policy(self, period: RentalPeriod) -> CancellationPolicy:
        deadline = None
        if self.cancellation_deadline_hours is not None:
            deadline = period.start - timedelta(hours=self.cancellation_deadline_hours)
        return CancellationPolicy(
            allowed=True,
            deadline=deadline,
            refund_percentage=self.default_refund_percentage
        )

    @staticmethod
    def _require_operator(actor: Actor, action: str) -> None:
        if not actor.is_operator():
            raise AccessDeniedError(f"Only operators can {action}")

    @staticmethod
    def _require_owner_or_operator(actor: Actor, reservation: Reservation) -> None:
        if not actor.is_operator() and reservation.requester_id != actor.user_id:
            raise AccessDeniedError("Access denied")
