"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import List, Optional

from domain.enums import ConditionGrade, InsuranceType, PaymentMethod, PaymentStatus, UserRole


# ============================================================================
# RESERVATION SCHEMAS
# ============================================================================

class LocationRequest(BaseModel):
    """Pickup or return location DTO"""
    location: str = Field(min_length=1)
    branch_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    notes: str = ""


class AdditionalDriverRequest(BaseModel):
    name: str
    license_number: str
    license_expiry: Optional[date] = None


class DriverInfoRequest(BaseModel):
    """Driver info DTO"""
    license_number: str = Field(min_length=1)
    license_expiry: date
    additional_drivers: List[AdditionalDriverRequest] = []


class InsuranceRequest(BaseModel):
    insurance_type: InsuranceType = InsuranceType.BASIC
    coverage: Decimal = Field(default=Decimal("0"), ge=0)
    deductible: Decimal = Field(default=Decimal("0"), ge=0)


class PaymentRequest(BaseModel):
    method: PaymentMethod
    transaction_id: Optional[str] = None


class AdditionalFeesRequest(BaseModel):
    """Additional fees DTO; every fee must be zero or more"""
    insurance: Decimal = Field(default=Decimal("0"), ge=0)
    fuel: Decimal = Field(default=Decimal("0"), ge=0)
    cleaning: Decimal = Field(default=Decimal("0"), ge=0)
    late_return: Decimal = Field(default=Decimal("0"), ge=0)


class VehicleConditionRequest(BaseModel):
    fuel_level: Optional[int] = Field(None, ge=0, le=100)
    mileage: Optional[int] = Field(None, ge=0)
    exterior: Optional[ConditionGrade] = None
    interior: Optional[ConditionGrade] = None
    photos: Optional[List[str]] = None
    damage_report: Optional[str] = None


class CreateReservationRequest(BaseModel):
    """Create reservation request DTO"""
    resource_id: str = Field(min_length=1)
    start: datetime
    end: datetime
    pickup: LocationRequest
    return_details: LocationRequest
    driver_info: DriverInfoRequest
    payment: PaymentRequest
    insurance: InsuranceRequest = InsuranceRequest()
    pickup_condition: Optional[VehicleConditionRequest] = None
    special_requests: str = ""


class ModifyReservationRequest(BaseModel):
    """Modify reservation request DTO"""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    pickup: Optional[LocationRequest] = None
    return_details: Optional[LocationRequest] = None
    insurance: Optional[InsuranceRequest] = None
    additional_fees: Optional[AdditionalFeesRequest] = None
    special_requests: Optional[str] = None
    admin_notes: Optional[str] = None


class ActivateReservationRequest(BaseModel):
    """Activate reservation request DTO"""
    pickup_condition: Optional[VehicleConditionRequest] = None


class CompleteReservationRequest(BaseModel):
    """Complete reservation request DTO"""
    return_condition: Optional[VehicleConditionRequest] = None
    actual_return_at: Optional[datetime] = None


class CancelReservationRequest(BaseModel):
    """Cancel reservation request DTO"""
    force: bool = False


class LocationResponse(BaseModel):
    location: str
    branch_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    notes: str = ""
    actual_return_at: Optional[datetime] = None


class VehicleConditionResponse(BaseModel):
    fuel_level: Optional[int] = None
    mileage: Optional[int] = None
    exterior: Optional[str] = None
    interior: Optional[str] = None
    photos: List[str] = []
    damage_report: str = ""


class FeesResponse(BaseModel):
    insurance: Decimal
    fuel: Decimal
    cleaning: Decimal
    late_return: Decimal


class CancellationPolicyResponse(BaseModel):
    allowed: bool
    deadline: Optional[datetime] = None
    refund_percentage: Decimal


class PaymentResponse(BaseModel):
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class ReservationResponse(BaseModel):
    """Reservation response DTO"""
    reservation_id: UUID
    resource_id: str
    requester_id: UUID
    start: datetime
    end: datetime
    status: str
    is_overdue: bool
    price_per_day: Decimal
    duration_days: int
    subtotal: Decimal
    additional_fees: FeesResponse
    final_amount: Decimal
    currency: str
    refund_amount: Optional[Decimal] = None
    pickup: LocationResponse
    return_details: LocationResponse
    pickup_condition: VehicleConditionResponse
    return_condition: VehicleConditionResponse
    insurance_type: InsuranceType
    payment: PaymentResponse
    cancellation_policy: CancellationPolicyResponse
    can_cancel: bool
    special_requests: str
    admin_notes: str
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    version: int


class ReservationListResponse(BaseModel):
    """Paginated reservation listing"""
    results: List[ReservationResponse]
    total: int
    page: int
    pages: int


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
    user_id: UUID
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: UserRole
    disabled: bool
