"""
Pytest configuration and shared fixtures for the reservation engine tests.
"""
import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

# Keep test runs independent of a developer's .env
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-unit-tests-only")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from application.services import ReservationService
from domain.enums import PaymentMethod, UserRole
from domain.value_objects import Actor, DriverInfo, PaymentInfo, PickupDetails, ReturnDetails
from infrastructure.repositories.in_memory_repositories import (
    InMemoryReservationRepository, InMemoryResourceCatalog, InMemoryHistoryProjector
)


class FrozenClock:
    """Clock the engine reads; tests move it explicitly"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def repository():
    return InMemoryReservationRepository()


@pytest.fixture
def catalog():
    catalog = InMemoryResourceCatalog()
    catalog.add_resource("CAR-1", Decimal("50"))
    catalog.add_resource("CAR-2", Decimal("80"))
    return catalog


@pytest.fixture
def history():
    return InMemoryHistoryProjector()


@pytest.fixture
def service(repository, catalog, history, clock):
    return ReservationService(
        repository,
        catalog,
        history,
        clock=clock,
        store_timeout=1.0,
        currency="USD",
        default_refund_percentage=Decimal("100")
    )


@pytest.fixture
def operator():
    return Actor(user_id=uuid4(), role=UserRole.OPERATOR)


@pytest.fixture
def customer():
    return Actor(user_id=uuid4(), role=UserRole.CUSTOMER)


@pytest.fixture
def other_customer():
    return Actor(user_id=uuid4(), role=UserRole.CUSTOMER)


@pytest.fixture
def sample_driver():
    return DriverInfo(license_number="D1234567", license_expiry=date(2040, 1, 1))


@pytest.fixture
def book(service, customer, clock, sample_driver):
    """Reserve a car `start_days` to `end_days` days after the clock's current time"""

    async def _book(resource_id="CAR-1", start_days=2, end_days=5, actor=None, svc=None, **kwargs):
        start = clock.now + timedelta(days=start_days)
        end = clock.now + timedelta(days=end_days)
        return await (svc or service).reserve(
            actor=actor or customer,
            resource_id=resource_id,
            start=start,
            end=end,
            pickup=PickupDetails(location="Downtown branch", scheduled_at=start),
            return_details=ReturnDetails(location="Airport branch", scheduled_at=end),
            driver_info=sample_driver,
            payment=PaymentInfo(method=PaymentMethod.CREDIT_CARD),
            **kwargs
        )

    return _book
