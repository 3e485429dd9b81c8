"""Domain Value Objects"""
from pydantic import BaseModel, Field, validator
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID
from typing import Optional, List

from domain.enums import (
    ConditionGrade, InsuranceType, PaymentMethod, PaymentStatus, UserRole
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so every instant compares cleanly"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RentalPeriod(BaseModel):
    """Value Object for the half-open rental interval [start, end)"""
    start: datetime
    end: datetime

    @validator('start', 'end')
    def normalize_timezone(cls, v):
        return _as_utc(v)

    @validator('end')
    def end_after_start(cls, v, values):
        if 'start' in values and v <= values['start']:
            raise ValueError('End must be after start')
        return v

    def overlaps(self, other: "RentalPeriod") -> bool:
        """Two periods conflict iff each one starts before the other ends"""
        return self.start < other.end and other.start < self.end

    class Config:
        frozen = True


class Money(BaseModel):
    """Value Object for monetary amounts"""
    amount: Decimal = Field(ge=0)
    currency: str = "USD"

    class Config:
        frozen = True


class AdditionalFees(BaseModel):
    """Named surcharges added on top of the rental subtotal"""
    insurance: Decimal = Field(default=Decimal("0"), ge=0)
    fuel: Decimal = Field(default=Decimal("0"), ge=0)
    cleaning: Decimal = Field(default=Decimal("0"), ge=0)
    late_return: Decimal = Field(default=Decimal("0"), ge=0)

    def total(self) -> Decimal:
        return self.insurance + self.fuel + self.cleaning + self.late_return

    class Config:
        frozen = True


class CancellationPolicy(BaseModel):
    """Value Object for cancellation policy"""
    allowed: bool = True
    deadline: Optional[datetime] = None
    refund_percentage: Decimal = Field(default=Decimal("100"), ge=0, le=100)

    @validator('deadline')
    def normalize_timezone(cls, v):
        return _as_utc(v)

    def permits_cancellation(self, now: datetime) -> bool:
        """Check whether the policy still allows cancelling at `now`"""
        if not self.allowed:
            return False
        if self.deadline is None:
            return True
        return now <= self.deadline

    class Config:
        frozen = True


class PickupDetails(BaseModel):
    location: str = Field(min_length=1)
    branch_id: Optional[str] = None
    scheduled_at: datetime
    notes: str = ""

    @validator('scheduled_at')
    def normalize_timezone(cls, v):
        return _as_utc(v)

    class Config:
        frozen = True


class ReturnDetails(BaseModel):
    location: str = Field(min_length=1)
    branch_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    notes: str = ""
    # Only ever set when the rental is completed
    actual_return_at: Optional[datetime] = None

    @validator('scheduled_at', 'actual_return_at')
    def normalize_timezone(cls, v):
        return _as_utc(v)

    class Config:
        frozen = True


class VehicleCondition(BaseModel):
    """Condition of the car at pickup or at return"""
    fuel_level: Optional[int] = Field(default=None, ge=0, le=100)
    mileage: Optional[int] = Field(default=None, ge=0)
    exterior: Optional[ConditionGrade] = None
    interior: Optional[ConditionGrade] = None
    photos: List[str] = []
    damage_report: str = ""

    def merged_with(self, update: "VehicleCondition") -> "VehicleCondition":
        """Overlay the fields explicitly set on `update`"""
        data = self.model_dump()
        data.update(update.model_dump(exclude_unset=True))
        return VehicleCondition(**data)

    class Config:
        frozen = True


class AdditionalDriver(BaseModel):
    name: str
    license_number: str
    license_expiry: Optional[date] = None

    class Config:
        frozen = True


class DriverInfo(BaseModel):
    license_number: str = Field(min_length=1)
    license_expiry: date
    additional_drivers: List[AdditionalDriver] = []

    class Config:
        frozen = True


class InsuranceCoverage(BaseModel):
    insurance_type: InsuranceType = InsuranceType.BASIC
    coverage: Decimal = Field(default=Decimal("0"), ge=0)
    deductible: Decimal = Field(default=Decimal("0"), ge=0)

    class Config:
        frozen = True


class PaymentInfo(BaseModel):
    """Payment record; informational only, no gateway is called"""
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None

    class Config:
        frozen = True


class Actor(BaseModel):
    """Verified identity of the caller, supplied by the auth layer"""
    user_id: UUID
    role: UserRole = UserRole.CUSTOMER

    def is_operator(self) -> bool:
        return self.role == UserRole.OPERATOR

    class Config:
        frozen = True
