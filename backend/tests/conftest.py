# backend/tests/conftest.py
"""
Pytest configuration for the CleanConnect backend.

Tests run against an in-memory SQLite database with the in-process booking
lock, Celery dispatch switched off and no platform-settings caching, so every
test sees its own writes immediately.
"""

import os

# CRITICAL: Set test configuration BEFORE any app imports!
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["BOOKING_LOCK_BACKEND"] = "local"
os.environ["TASK_DISPATCH_ENABLED"] = "false"
os.environ["PLATFORM_SETTINGS_CACHE_TTL_SECONDS"] = "0"
os.environ["STRIPE_SECRET_KEY"] = ""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict

from fastapi.testclient import TestClient
import pytest

from app.core.config import settings
from app.database import Base, SessionLocal, engine
import app.models  # noqa: F401  registers every table
from app.models.booking import Booking
from app.services.arrival_verifier import ArrivalVerifier
from app.services.appeal_service import AppealService
from app.services.booking_state_machine import BookingStateMachine
from app.services.config_service import PlatformSettingsService, invalidate_platform_settings_cache
from app.services.escrow_ledger_service import EscrowLedgerService
from app.services.no_show_service import NoShowService
from app.services.notification_service import NotificationService
from app.services.time_tracker import TimeTracker

from tests._utils import (
    BOOKING_DATE,
    CREATED_AT,
    CUSTOMER_ID,
    PROVIDER_ID,
    START_TIME,
    FakePaymentGateway,
)

settings.is_testing = True
settings.booking_lock_backend = "local"
settings.task_dispatch_enabled = False
settings.platform_settings_cache_ttl_seconds = 0


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    invalidate_platform_settings_cache()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)
        invalidate_platform_settings_cache()


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def notifier(db) -> NotificationService:
    return NotificationService(db)


@pytest.fixture
def settings_service(db) -> PlatformSettingsService:
    return PlatformSettingsService(db)


@pytest.fixture
def state_machine(db, gateway, notifier, settings_service) -> BookingStateMachine:
    return BookingStateMachine(
        db, gateway=gateway, notifier=notifier, settings_service=settings_service
    )


@pytest.fixture
def no_show_service(db, gateway, notifier, settings_service) -> NoShowService:
    return NoShowService(
        db, gateway=gateway, notifier=notifier, settings_service=settings_service
    )


@pytest.fixture
def arrival_verifier(db, state_machine, no_show_service, notifier, settings_service):
    return ArrivalVerifier(
        db,
        state_machine=state_machine,
        no_show_service=no_show_service,
        notifier=notifier,
        settings_service=settings_service,
    )


@pytest.fixture
def time_tracker(db, state_machine, no_show_service, notifier) -> TimeTracker:
    return TimeTracker(
        db, state_machine=state_machine, no_show_service=no_show_service, notifier=notifier
    )


@pytest.fixture
def ledger(db, state_machine, notifier) -> EscrowLedgerService:
    return EscrowLedgerService(db, state_machine=state_machine, notifier=notifier)


@pytest.fixture
def appeal_service(db, state_machine, notifier) -> AppealService:
    return AppealService(db, state_machine=state_machine, notifier=notifier)


# ============================================================================
# Booking builders
# ============================================================================


@pytest.fixture
def booking_factory(state_machine) -> Callable[..., Booking]:
    """Create a pending booking; defaults to 2 hours at $25/hour."""

    def _create(**overrides: Any) -> Booking:
        params: Dict[str, Any] = {
            "booking_date": BOOKING_DATE,
            "start_time": START_TIME,
            "estimated_hours": Decimal("2"),
            "hourly_rate": Decimal("25"),
            "provider_id": PROVIDER_ID,
            "service_address": "12 Main St, Brooklyn, NY",
            "customer_payment_method_id": "pm_test_visa",
            "provider_account_id": "acct_test_provider",
            "now": CREATED_AT,
        }
        params.update(overrides)
        customer_id = params.pop("customer_id", CUSTOMER_ID)
        return state_machine.create_booking(customer_id, **params)

    return _create


@pytest.fixture
def confirmed_booking(state_machine, booking_factory) -> Booking:
    """Accepted but not yet paid."""
    booking = booking_factory()
    return state_machine.accept(booking.id, PROVIDER_ID)


@pytest.fixture
def paid_booking(state_machine, confirmed_booking) -> Booking:
    """Accepted, authorized and captured into escrow."""
    state_machine.create_payment_intent(confirmed_booking.id)
    return state_machine.record_payment_outcome(confirmed_booking.id, "succeeded")


@pytest.fixture
def completed_booking(time_tracker, paid_booking) -> Booking:
    """Paid booking worked for exactly 90 minutes."""
    started = datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc)
    time_tracker.start_work(paid_booking.id, PROVIDER_ID, now=started)
    return time_tracker.end_work(
        paid_booking.id, PROVIDER_ID, now=started + timedelta(minutes=90)
    )


# ============================================================================
# API client
# ============================================================================


@pytest.fixture
def client(db, gateway):
    from app.api.dependencies.database import get_db
    from app.api.dependencies.services import get_gateway
    from app.main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

