"""Domain Entities - Aggregates"""
from pydantic import BaseModel, Field, model_validator, validator
from uuid import UUID, uuid4
from datetime import datetime, timezone
from typing import Optional
from decimal import Decimal

from domain.enums import LIVE_STATUSES, TERMINAL_STATUSES, ReservationStatus
from domain.exceptions import (
    InvalidTransitionError, NotCancellableError, ReservationValidationError, TooEarlyError
)
from domain.pricing import calculate_price, calculate_refund
from domain.value_objects import (
    AdditionalFees, CancellationPolicy, DriverInfo, InsuranceCoverage, Money, PaymentInfo,
    PickupDetails, RentalPeriod, ReturnDetails, VehicleCondition
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity"""

    # Identity
    reservation_id: UUID = Field(default_factory=uuid4)

    # References to other contexts
    resource_id: str
    requester_id: UUID

    # Interval and pricing snapshot
    period: RentalPeriod
    price_per_day: Decimal = Field(ge=0)
    currency: str = "USD"
    additional_fees: AdditionalFees = Field(default_factory=AdditionalFees)

    # Derived from period, price_per_day and additional_fees
    duration_days: int = 0
    subtotal: Decimal = Decimal("0")
    fees_total: Decimal = Decimal("0")
    final_amount: Decimal = Decimal("0")

    # Status
    status: ReservationStatus = ReservationStatus.PENDING

    # Value Objects
    pickup: PickupDetails
    return_details: ReturnDetails
    pickup_condition: VehicleCondition = Field(default_factory=VehicleCondition)
    return_condition: VehicleCondition = Field(default_factory=VehicleCondition)
    driver_info: DriverInfo
    insurance: InsuranceCoverage = Field(default_factory=InsuranceCoverage)
    payment: PaymentInfo
    cancellation_policy: CancellationPolicy = Field(default_factory=CancellationPolicy)
    refund_amount: Optional[Decimal] = None

    special_requests: str = ""
    admin_notes: str = ""

    # Metadata
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    confirmed_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    version: int = 1

    class Config:
        from_attributes = True

    @validator('status')
    def status_is_storable(cls, v):
        if v == ReservationStatus.OVERDUE:
            raise ValueError('OVERDUE is a derived view and cannot be stored')
        return v

    @model_validator(mode="after")
    def derive_pricing(self) -> "Reservation":
        self._recalculate_pricing()
        return self

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        resource_id: str,
        requester_id: UUID,
        period: RentalPeriod,
        price_per_day: Decimal,
        pickup: PickupDetails,
        return_details: ReturnDetails,
        driver_info: DriverInfo,
        payment: PaymentInfo,
        now: datetime,
        currency: str = "USD",
        additional_fees: Optional[AdditionalFees] = None,
        insurance: Optional[InsuranceCoverage] = None,
        cancellation_policy: Optional[CancellationPolicy] = None,
        pickup_condition: Optional[VehicleCondition] = None,
        special_requests: str = ""
    ) -> "Reservation":
        """Create new reservation with validation"""
        Reservation._validate_period(period, now)
        Reservation._validate_driver(driver_info, period)

        return Reservation(
            resource_id=resource_id,
            requester_id=requester_id,
            period=period,
            price_per_day=price_per_day,
            currency=currency,
            additional_fees=additional_fees or AdditionalFees(),
            status=ReservationStatus.PENDING,
            pickup=pickup,
            return_details=return_details,
            pickup_condition=pickup_condition or VehicleCondition(),
            driver_info=driver_info,
            insurance=insurance or InsuranceCoverage(),
            payment=payment,
            cancellation_policy=cancellation_policy or CancellationPolicy(),
            special_requests=special_requests,
            created_at=now,
            updated_at=now
        )

    # ==================== MODIFICATION METHODS ====================
    def modify(
        self,
        now: datetime,
        new_period: Optional[RentalPeriod] = None,
        additional_fees: Optional[AdditionalFees] = None,
        pickup: Optional[PickupDetails] = None,
        return_details: Optional[ReturnDetails] = None,
        insurance: Optional[InsuranceCoverage] = None,
        special_requests: Optional[str] = None,
        admin_notes: Optional[str] = None
    ) -> None:
        """Modify reservation details; status is never touched here"""
        if not self.is_live():
            raise InvalidTransitionError(
                f"Cannot modify reservation with status {self.status.value}"
            )

        if new_period is not None:
            if self.status not in (ReservationStatus.PENDING, ReservationStatus.CONFIRMED):
                raise InvalidTransitionError(
                    f"Cannot change the rental period with status {self.status.value}"
                )
            Reservation._validate_period(new_period, now)
            Reservation._validate_driver(self.driver_info, new_period)
            self._reschedule(new_period)

        if additional_fees is not None:
            self.additional_fees = additional_fees
        if pickup is not None:
            self.pickup = pickup
        if return_details is not None:
            # The actual return time belongs to completion only
            self.return_details = return_details.model_copy(update={"actual_return_at": None})
        if insurance is not None:
            self.insurance = insurance
        if special_requests is not None:
            self.special_requests = special_requests
        if admin_notes is not None:
            self.admin_notes = admin_notes

        self._recalculate_pricing()
        self._touch(now)

    # ==================== STATE TRANSITION METHODS ====================
    def confirm(self, now: datetime) -> None:
        """Confirm a pending reservation"""
        if self.status != ReservationStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot confirm reservation with status {self.status.value}"
            )

        self.status = ReservationStatus.CONFIRMED
        self.confirmed_at = now
        self._touch(now)

    def activate(self, now: datetime, pickup_condition: Optional[VehicleCondition] = None) -> None:
        """Hand the car over to the renter, recording its condition at pickup"""
        if self.status != ReservationStatus.CONFIRMED:
            raise InvalidTransitionError(
                f"Cannot activate reservation with status {self.status.value}"
            )

        if now < self.period.start:
            raise TooEarlyError("Cannot activate reservation before its start time")

        if pickup_condition is not None:
            self.pickup_condition = self.pickup_condition.merged_with(pickup_condition)

        self.status = ReservationStatus.ACTIVE
        self.activated_at = now
        self._touch(now)

    def complete(
        self,
        now: datetime,
        return_condition: Optional[VehicleCondition] = None,
        actual_return_at: Optional[datetime] = None
    ) -> None:
        """Process the car's return"""
        if self.status != ReservationStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Cannot complete reservation with status {self.status.value}"
            )

        if return_condition is not None:
            self.return_condition = self.return_condition.merged_with(return_condition)

        self.return_details = ReturnDetails(
            **{**self.return_details.model_dump(), "actual_return_at": actual_return_at or now}
        )
        self.status = ReservationStatus.COMPLETED
        self.completed_at = now
        self._touch(now)

    def cancel(self, now: datetime, force: bool = False) -> Money:
        """Cancel reservation and return the refund owed"""
        if self.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Cannot cancel reservation with status {self.status.value}"
            )

        if not force and not self.can_cancel(now):
            raise NotCancellableError("Reservation cannot be cancelled under its cancellation policy")

        refund = self.calculate_refund()

        self.status = ReservationStatus.CANCELLED
        self.cancelled_at = now
        self.refund_amount = refund.amount
        self._touch(now)

        return refund

    def ensure_deletable(self) -> None:
        if self.status not in (ReservationStatus.PENDING, ReservationStatus.CANCELLED):
            raise InvalidTransitionError(
                f"Cannot delete reservation with status {self.status.value}"
            )

    # ==================== QUERY METHODS ====================
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    def can_cancel(self, now: datetime) -> bool:
        return self.is_live() and self.cancellation_policy.permits_cancellation(now)

    def is_overdue(self, now: datetime) -> bool:
        return self.status == ReservationStatus.ACTIVE and now > self.period.end

    def effective_status(self, now: datetime) -> ReservationStatus:
        """Stored status, with ACTIVE shown as OVERDUE once the end has passed"""
        if self.is_overdue(now):
            return ReservationStatus.OVERDUE
        return self.status

    def was_confirmed(self) -> bool:
        return self.confirmed_at is not None

    def holds_availability_flag(self) -> bool:
        """Whether this reservation left the car's catalog flag at false

        Live reservations hold it; so does one cancelled while still pending,
        since that cancellation never flips the flag back.
        """
        if self.is_live():
            return True
        return self.status == ReservationStatus.CANCELLED and not self.was_confirmed()

    def calculate_refund(self) -> Money:
        """Refund from the snapshotted final amount and the policy percentage"""
        return Money(
            amount=calculate_refund(self.final_amount, self.cancellation_policy.refund_percentage),
            currency=self.currency
        )

    # ==================== PRIVATE METHODS ====================
    @staticmethod
    def _validate_period(period: RentalPeriod, now: datetime) -> None:
        if period.start <= now:
            raise ReservationValidationError("Start must be in the future")

    @staticmethod
    def _validate_driver(driver_info: DriverInfo, period: RentalPeriod) -> None:
        if driver_info.license_expiry < period.start.date():
            raise ReservationValidationError("Driver license expires before the rental starts")

    def _reschedule(self, new_period: RentalPeriod) -> None:
        """Move the period, keeping pickup and return times at the same offset from it"""
        pickup_shift = new_period.start - self.period.start
        return_shift = new_period.end - self.period.end

        self.pickup = self.pickup.model_copy(update={"scheduled_at": self.pickup.scheduled_at + pickup_shift})
        if self.return_details.scheduled_at is not None:
            self.return_details = self.return_details.model_copy(
                update={"scheduled_at": self.return_details.scheduled_at + return_shift}
            )
        self.period = new_period

    def _recalculate_pricing(self) -> None:
        breakdown = calculate_price(self.period, self.price_per_day, self.additional_fees)
        self.duration_days = breakdown.duration_days
        self.subtotal = breakdown.subtotal
        self.fees_total = breakdown.fees_total
        self.final_amount = breakdown.final_amount

    def _touch(self, now: datetime) -> None:
        self.updated_at = now
        self.version += 1


class Resource(BaseModel):
    """A bookable car as the fleet catalog sees it"""
    resource_id: str
    price_per_day: Decimal = Field(ge=0)
    is_available: bool = True

    class Config:
        from_attributes = True


class ReservationEvent(BaseModel):
    """Denormalized summary sent to the history projector after a transition"""
    reservation_id: UUID
    resource_id: str
    requester_id: UUID
    start: datetime
    end: datetime
    new_status: ReservationStatus
    final_amount: Decimal
    occurred_at: datetime = Field(default_factory=utc_now)

    @staticmethod
    def from_reservation(reservation: Reservation, occurred_at: datetime) -> "ReservationEvent":
        return ReservationEvent(
            reservation_id=reservation.reservation_id,
            resource_id=reservation.resource_id,
            requester_id=reservation.requester_id,
            start=reservation.period.start,
            end=reservation.period.end,
            new_status=reservation.status,
            final_amount=reservation.final_amount,
            occurred_at=occurred_at
        )
