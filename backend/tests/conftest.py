# backend/tests/conftest.py
"""
Pytest configuration for the Courtside backend.

Every test gets its own in-memory SQLite database (StaticPool, so the
TestClient's worker threads share the one connection), a fake PayOS
gateway and a frozen clock. Routes are exercised through TestClient with
dependency overrides; the lifespan is not run.
"""

import os

# Set testing mode BEFORE any courtside imports
os.environ.setdefault("CI", "true")
os.environ.setdefault("SITE_MODE", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from typing import Any, Callable, Dict, Iterator, List, Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from courtside.api.dependencies import get_clock, get_db, get_payment_gateway
from courtside.core.security import Actor
from courtside.database import Base
from courtside.integrations.payos_client import FakePayOSClient
from courtside.main import app
import courtside.models  # noqa: F401  (registers tables on Base.metadata)
from courtside.models import Court, Venue
from courtside.schemas.booking import HoldCreate
from courtside.services.availability_service import AvailabilityService
from courtside.services.booking_lifecycle import BookingLifecycle
from courtside.services.expiration_sweeper import ExpirationSweeper
from courtside.services.hold_service import HoldService
from courtside.services.payment_reconciler import PaymentReconciler
from tests.factories.booking_builders import (
    ADMIN_ID,
    CUSTOMER_ID,
    OTHER_CUSTOMER_ID,
    OWNER_ID,
    FrozenClock,
    auth_headers,
    make_hold_request,
    seed_venue,
)


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Iterator[Session]:
    """Session configured like the application's SessionLocal."""
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def gateway() -> FakePayOSClient:
    return FakePayOSClient()


@pytest.fixture
def venue_setup(db: Session) -> Dict[str, Any]:
    return seed_venue(db)


@pytest.fixture
def venue(venue_setup: Dict[str, Any]) -> Venue:
    return venue_setup["venue"]


@pytest.fixture
def court(venue_setup: Dict[str, Any]) -> Court:
    return venue_setup["courts"][0]


@pytest.fixture
def second_court(venue_setup: Dict[str, Any]) -> Court:
    return venue_setup["courts"][1]


@pytest.fixture
def customer() -> Actor:
    return Actor(id=CUSTOMER_ID, role="customer")


@pytest.fixture
def other_customer() -> Actor:
    return Actor(id=OTHER_CUSTOMER_ID, role="customer")


@pytest.fixture
def owner() -> Actor:
    return Actor(id=OWNER_ID, role="owner")


@pytest.fixture
def admin() -> Actor:
    return Actor(id=ADMIN_ID, role="admin")


@pytest.fixture
def hold_request(venue: Venue, court: Court) -> Callable[..., HoldCreate]:
    """Factory for hold requests on the seeded venue (first court by default)."""

    def _build(courts: Optional[List[Court]] = None, **kwargs: Any) -> HoldCreate:
        return make_hold_request(venue, courts or [court], **kwargs)

    return _build


@pytest.fixture
def availability_service(db: Session, clock: FrozenClock) -> AvailabilityService:
    return AvailabilityService(db, clock=clock)


@pytest.fixture
def lifecycle(db: Session, clock: FrozenClock) -> BookingLifecycle:
    return BookingLifecycle(db, clock=clock)


@pytest.fixture
def hold_service(db: Session, gateway: FakePayOSClient, clock: FrozenClock) -> HoldService:
    return HoldService(db, payment_gateway=gateway, clock=clock)


@pytest.fixture
def reconciler(db: Session, gateway: FakePayOSClient, clock: FrozenClock) -> PaymentReconciler:
    return PaymentReconciler(db, payment_gateway=gateway, clock=clock)


@pytest.fixture
def sweeper(db: Session, gateway: FakePayOSClient, clock: FrozenClock) -> ExpirationSweeper:
    return ExpirationSweeper(db, payment_gateway=gateway, clock=clock)


@pytest.fixture
def customer_headers() -> Dict[str, str]:
    return auth_headers(CUSTOMER_ID)


@pytest.fixture
def owner_headers() -> Dict[str, str]:
    return auth_headers(OWNER_ID, "owner")


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return auth_headers(ADMIN_ID, "admin")


@pytest.fixture
def client(db: Session, gateway: FakePayOSClient, clock: FrozenClock) -> Iterator[TestClient]:
    """Create a test client with the test database, fake gateway and frozen clock."""

    def override_get_db() -> Iterator[Session]:
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_clock] = lambda: clock

    # Don't use context manager - the lifespan would touch the real engine
    test_client = TestClient(app)

    yield test_client

    app.dependency_overrides.clear()
    test_client.close()
