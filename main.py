import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    CreateReservationRequest, ModifyReservationRequest, ActivateReservationRequest,
    CompleteReservationRequest, CancelReservationRequest, ReservationResponse, ReservationListResponse,
    LocationRequest, LocationResponse, VehicleConditionRequest, VehicleConditionResponse, FeesResponse,
    CancellationPolicyResponse, PaymentResponse, Token, UserResponse
)
from api.dependencies import get_current_active_user, get_current_actor, fake_users_db, get_user
from infrastructure.security import verify_password, create_access_token, ACCESS_TOKEN_EXPIRE_MINUTES
from config import settings
from domain.auth import User
from domain.entities import Reservation
from domain.enums import InsuranceType, PaymentMethod, ReservationStatus
from domain.exceptions import (
    AccessDeniedError, IntervalConflictError, InvalidTransitionError, NotCancellableError,
    NotFoundError, ReservationError, ReservationValidationError, ResourceUnavailableError,
    StoreUnavailableError, TooEarlyError
)
from domain.value_objects import (
    Actor, AdditionalDriver, AdditionalFees, DriverInfo, InsuranceCoverage, PaymentInfo,
    PickupDetails, ReturnDetails, VehicleCondition
)
from application.services import DEFAULT_PAGE_SIZE, ReservationPage, ReservationService, build_value
from infrastructure.repositories.in_memory_repositories import (
    InMemoryReservationRepository, InMemoryResourceCatalog, InMemoryHistoryProjector
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format=settings.LOG_FORMAT,
    datefmt=settings.LOG_DATE_FORMAT
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="Car rental reservation engine: conflict-free booking, lifecycle and refunds",
    version="1.0.0"
)

# Initialize repositories and collaborators
reservation_repo = InMemoryReservationRepository()
resource_catalog = InMemoryResourceCatalog()
history_projector = InMemoryHistoryProjector()

# Demo fleet
resource_catalog.add_resource("CAR-001", Decimal("50"))
resource_catalog.add_resource("CAR-002", Decimal("75"))
resource_catalog.add_resource("CAR-003", Decimal("120"))


# Dependency injection
def get_reservation_service() -> ReservationService:
    return ReservationService(reservation_repo, resource_catalog, history_projector)


_ERROR_STATUS = {
    NotFoundError: 404,
    AccessDeniedError: 403,
    IntervalConflictError: 409,
    ResourceUnavailableError: 409,
    InvalidTransitionError: 409,
    NotCancellableError: 400,
    TooEarlyError: 400,
    ReservationValidationError: 400,
    StoreUnavailableError: 503,
}


def _to_http_exception(error: ReservationError) -> HTTPException:
    """Translate a domain failure into a structured HTTP error"""
    status_code = _ERROR_STATUS.get(type(error), 400)
    logger.warning("Request rejected with %s: %s", error.code, error.message)
    return HTTPException(status_code=status_code, detail=error.to_dict())


# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}


@app.get("/api/enums/reservation-status", tags=["Enum Reference"])
async def get_reservation_statuses():
    """Get all ReservationStatus enum values"""
    return {
        "values": [item.value for item in ReservationStatus],
        "description": "OVERDUE is derived: an ACTIVE reservation whose end has passed"
    }


@app.get("/api/enums/payment-method", tags=["Enum Reference"])
async def get_payment_methods():
    """Get all PaymentMethod enum values"""
    return {"values": [item.value for item in PaymentMethod]}


@app.get("/api/enums/insurance-type", tags=["Enum Reference"])
async def get_insurance_types():
    """Get all InsuranceType enum values"""
    return {"values": [item.value for item in InsuranceType]}


# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = get_user(fake_users_db, form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = create_access_token(user, expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    logger.info("Issued access token for %s (%s)", user.username, user.role.value)
    return {"access_token": access_token, "token_type": "bearer"}


@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user


# ============================================================================
# RESERVATION ENDPOINTS
# ============================================================================

@app.post("/api/reservations", response_model=ReservationResponse, status_code=201, tags=["Reservations"])
async def create_reservation(
    request: CreateReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Reserve a car for a period"""
    try:
        reservation = await service.reserve(
            actor=actor,
            resource_id=request.resource_id,
            start=request.start,
            end=request.end,
            pickup=_pickup_from_request(request.pickup, request.start),
            return_details=_return_from_request(request.return_details, request.end),
            driver_info=DriverInfo(
                license_number=request.driver_info.license_number,
                license_expiry=request.driver_info.license_expiry,
                additional_drivers=[
                    AdditionalDriver(**d.model_dump()) for d in request.driver_info.additional_drivers
                ]
            ),
            payment=PaymentInfo(method=request.payment.method, transaction_id=request.payment.transaction_id),
            insurance=InsuranceCoverage(**request.insurance.model_dump()),
            pickup_condition=_condition_from_request(request.pickup_condition),
            special_requests=request.special_requests
        )
        return _reservation_to_response(reservation, service.clock())
    except ReservationError as e:
        raise _to_http_exception(e)
    except ValueError as e:
        raise _to_http_exception(ReservationValidationError(str(e)))


@app.get("/api/reservations/me", response_model=ReservationListResponse, tags=["Reservations"])
async def get_my_reservations(
    status: Optional[ReservationStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Get the caller's own reservations, newest first"""
    try:
        result = await service.list_by_requester(actor, actor.user_id, status=status, page=page, limit=limit)
        return _page_to_response(result, service.clock())
    except ReservationError as e:
        raise _to_http_exception(e)


@app.get("/api/reservations/requester/{requester_id}", response_model=ReservationListResponse,
         tags=["Reservations"])
async def get_requester_reservations(
    requester_id: UUID,
    status: Optional[ReservationStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Get a requester's reservations, newest first"""
    try:
        result = await service.list_by_requester(actor, requester_id, status=status, page=page, limit=limit)
        return _page_to_response(result, service.clock())
    except ReservationError as e:
        raise _to_http_exception(e)


@app.get("/api/reservations/resource/{resource_id}", response_model=List[ReservationResponse],
         tags=["Reservations"])
async def get_resource_reservations(
    resource_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Get reservations of a car, optionally only those overlapping [start, end)"""
    try:
        reservations = await service.list_by_resource(actor, resource_id, start=start, end=end)
        now = service.clock()
        return [_reservation_to_response(r, now) for r in reservations]
    except ReservationError as e:
        raise _to_http_exception(e)


@app.get("/api/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Get reservation by ID"""
    try:
        reservation = await service.get_reservation(actor, reservation_id)
        return _reservation_to_response(reservation, service.clock())
    except ReservationError as e:
        raise _to_http_exception(e)


@app.put("/api/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def modify_reservation(
    reservation_id: UUID,
    request: ModifyReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Modify reservation details

    A pickup or return sent without `scheduled_at` keeps the stored time,
    or follows the new start or end when the period moves too.
    """
    try:
        current = await service.get_reservation(actor, reservation_id)
        pickup = None
        if request.pickup is not None:
            pickup = _pickup_from_request(
                request.pickup, request.start or current.pickup.scheduled_at
            )
        return_details = None
        if request.return_details is not None:
            return_details = _return_from_request(
                request.return_details, request.end or current.return_details.scheduled_at
            )

        reservation = await service.modify_reservation(
            actor=actor,
            reservation_id=reservation_id,
            start=request.start,
            end=request.end,
            additional_fees=(
                AdditionalFees(**request.additional_fees.model_dump()) if request.additional_fees else None
            ),
            pickup=pickup,
            return_details=return_details,
            insurance=InsuranceCoverage(**request.insurance.model_dump()) if request.insurance else None,
            special_requests=request.special_requests,
            admin_notes=request.admin_notes
        )
        return _reservation_to_response(reservation, service.clock())
    except ReservationError as e:
        raise _to_http_exception(e)
    except ValueError as e:
        raise _to_http_exception(ReservationValidationError(str(e)))


@app.post("/api/reservations/{reservation_id}/confirm", response_model=ReservationResponse, tags=["Reservations"])
async def confirm_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Confirm a pending reservation"""
    try:
        reservation = await service.confirm_reservation(actor, reservation_id)
        return _reservation_to_response(reservation, service.clock())
    except ReservationError as e:
        raise _to_http_exception(e)


@app.post("/api/reservations/{reservation_id}/activate", response_model=ReservationResponse, tags=["Reservations"])
async def activate_reservation(
    reservation_id: UUID,
    request: Optional[ActivateReservationRequest] = None,
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Hand the car over to the renter, optionally recording its condition"""
    try:
        pickup_condition = _condition_from_request(request.pickup_condition) if request else None
        reservation = await service.activate_reservation(actor, reservation_id, pickup_condition=pickup_condition)
        return _reservation_to_response(reservation, service.clock())
    except ReservationError as e:
        raise _to_http_exception(e)


@app.post("/api/reservations/{reservation_id}/complete", response_model=ReservationResponse, tags=["Reservations"])
async def complete_reservation(
    reservation_id: UUID,
    request: CompleteReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Record the car's return"""
    try:
        reservation = await service.complete_reservation(
            actor,
            reservation_id,
            return_condition=_condition_from_request(request.return_condition),
            actual_return_at=request.actual_return_at
        )
        return _reservation_to_response(reservation, service.clock())
    except ReservationError as e:
        raise _to_http_exception(e)
    except ValueError as e:
        raise _to_http_exception(ReservationValidationError(str(e)))


@app.post("/api/reservations/{reservation_id}/cancel", response_model=ReservationResponse, tags=["Reservations"])
async def cancel_reservation(
    reservation_id: UUID,
    request: CancelReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Cancel reservation; the response carries the refund owed"""
    try:
        reservation = await service.cancel_reservation(actor, reservation_id, force=request.force)
        return _reservation_to_response(reservation, service.clock())
    except ReservationError as e:
        raise _to_http_exception(e)


@app.delete("/api/reservations/{reservation_id}", tags=["Reservations"])
async def delete_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor)
):
    """Delete a pending or cancelled reservation"""
    try:
        await service.delete_reservation(actor, reservation_id)
        return {"message": "Reservation deleted successfully"}
    except ReservationError as e:
        raise _to_http_exception(e)


# ============================================================================
# HELPERS
# ============================================================================

def _pickup_from_request(request: LocationRequest, default_time: Optional[datetime]) -> PickupDetails:
    return build_value(
        PickupDetails,
        location=request.location,
        branch_id=request.branch_id,
        scheduled_at=request.scheduled_at or default_time,
        notes=request.notes
    )


def _return_from_request(request: LocationRequest, default_time: Optional[datetime]) -> ReturnDetails:
    return build_value(
        ReturnDetails,
        location=request.location,
        branch_id=request.branch_id,
        scheduled_at=request.scheduled_at or default_time,
        notes=request.notes
    )


def _condition_from_request(request: Optional[VehicleConditionRequest]) -> Optional[VehicleCondition]:
    # Only the fields the caller sent are merged over the recorded condition
    if request is None:
        return None
    return build_value(VehicleCondition, **request.model_dump(exclude_unset=True))


def _page_to_response(result: ReservationPage, now: datetime) -> ReservationListResponse:
    return ReservationListResponse(
        results=[_reservation_to_response(r, now) for r in result.results],
        total=result.total,
        page=result.page,
        pages=result.pages
    )


def _condition_to_response(condition: VehicleCondition) -> VehicleConditionResponse:
    return VehicleConditionResponse(
        fuel_level=condition.fuel_level,
        mileage=condition.mileage,
        exterior=condition.exterior.value if condition.exterior else None,
        interior=condition.interior.value if condition.interior else None,
        photos=list(condition.photos),
        damage_report=condition.damage_report
    )


def _reservation_to_response(reservation: Reservation, now: datetime) -> ReservationResponse:
    """Convert Reservation entity to ReservationResponse"""
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        resource_id=reservation.resource_id,
        requester_id=reservation.requester_id,
        start=reservation.period.start,
        end=reservation.period.end,
        status=reservation.effective_status(now).value,
        is_overdue=reservation.is_overdue(now),
        price_per_day=reservation.price_per_day,
        duration_days=reservation.duration_days,
        subtotal=reservation.subtotal,
        additional_fees=FeesResponse(**reservation.additional_fees.model_dump()),
        final_amount=reservation.final_amount,
        currency=reservation.currency,
        refund_amount=reservation.refund_amount,
        pickup=LocationResponse(**reservation.pickup.model_dump()),
        return_details=LocationResponse(**reservation.return_details.model_dump()),
        pickup_condition=_condition_to_response(reservation.pickup_condition),
        return_condition=_condition_to_response(reservation.return_condition),
        insurance_type=reservation.insurance.insurance_type,
        payment=PaymentResponse(**reservation.payment.model_dump()),
        cancellation_policy=CancellationPolicyResponse(**reservation.cancellation_policy.model_dump()),
        can_cancel=reservation.can_cancel(now),
        special_requests=reservation.special_requests,
        admin_notes=reservation.admin_notes,
        created_at=reservation.created_at,
        updated_at=reservation.updated_at,
        confirmed_at=reservation.confirmed_at,
        activated_at=reservation.activated_at,
        completed_at=reservation.completed_at,
        cancelled_at=reservation.cancelled_at,
        version=reservation.version
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
