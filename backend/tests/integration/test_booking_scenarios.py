"""
End-to-end booking scenarios.

Scenarios 1-3 go through the HTTP API with the fake gateway and frozen
clock. Scenario 4 races two hold requests on a file-backed SQLite database,
each thread with its own connection, the way two API workers would.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from courtside.core.constants import REASON_NO_PAYMENT_METHOD
from courtside.core.exceptions import SlotConflictException
from courtside.core.security import Actor
from courtside.database import Base
from courtside.repositories.payment_repository import PaymentRepository
from courtside.services.hold_service import FLOW_QUICK, HoldService
from tests.factories.booking_builders import FrozenClock, make_hold_request, seed_venue

BOOKINGS = "/api/v1/bookings"


def _availability(client, court_id: str) -> Dict[str, Any]:
    response = client.post(
        f"{BOOKINGS}/check-availability",
        json={
            "court_ids": [court_id],
            "booking_date": "2025-01-10",
            "time_slots": [{"start": "18:00", "end": "19:00"}],
        },
    )
    assert response.status_code == 200
    return response.json()


def test_hold_blocks_availability_until_released(client, hold_request, customer_headers, court):
    hold = client.post(
        f"{BOOKINGS}/hold", json=hold_request().model_dump(mode="json"), headers=customer_headers
    ).json()["booking"]

    blocked = _availability(client, court.id)
    assert blocked["is_available"] is False
    assert blocked["conflicting_bookings"][0]["booking_id"] == hold["id"]
    assert blocked["conflicting_bookings"][0]["holder_id"] == "customer-1"

    released = client.post(f"{BOOKINGS}/{hold['id']}/release", headers=customer_headers)
    assert released.status_code == 200

    assert _availability(client, court.id)["is_available"] is True


def test_paid_webhook_confirms_once(client, db, gateway, hold_request, customer_headers):
    created = client.post(BOOKINGS, json=hold_request().model_dump(mode="json"), headers=customer_headers)
    assert created.status_code == 201
    booking_id = created.json()["booking"]["id"]
    order_code = created.json()["payment"]["order_code"]
    assert created.json()["payment"]["amount"] == 200000

    body = gateway.build_webhook_body(order_code)
    first = client.post("/api/v1/webhooks/payments", content=body)
    confirmed = client.get(f"{BOOKINGS}/{booking_id}", headers=customer_headers).json()

    second = client.post("/api/v1/webhooks/payments", content=body)
    after_duplicate = client.get(f"{BOOKINGS}/{booking_id}", headers=customer_headers).json()

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["outcome"] == "already_applied"
    assert confirmed["status"] == "confirmed"
    assert confirmed["payment_status"] == "paid"
    assert after_duplicate == confirmed
    assert len(PaymentRepository(db).list_transactions(booking_id)) == 1


def test_unpaid_hold_is_swept_after_expiry(client, hold_request, customer_headers, admin_headers, clock):
    hold = client.post(
        f"{BOOKINGS}/hold", json=hold_request().model_dump(mode="json"), headers=customer_headers
    ).json()["booking"]
    assert hold["hold_until"] == "2025-01-09T09:05:00+00:00"

    clock.advance(minutes=6)
    report = client.post(f"{BOOKINGS}/cleanup", headers=admin_headers).json()

    assert report["cancelled"] == 1
    swept = client.get(f"{BOOKINGS}/{hold['id']}", headers=customer_headers).json()
    assert swept["status"] == "cancelled"
    assert swept["cancellation_reason"] == REASON_NO_PAYMENT_METHOD


@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path}/race.db",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


def test_concurrent_holds_on_one_slot(file_engine):
    SessionLocal = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    setup_session = SessionLocal()
    seeded = seed_venue(setup_session)
    request = make_hold_request(seeded["venue"], seeded["courts"][:1])
    setup_session.close()

    clock = FrozenClock()
    barrier = threading.Barrier(2)
    successes: List[str] = []
    conflicts: List[SlotConflictException] = []
    errors: List[Exception] = []

    def attempt(actor_id: str) -> None:
        session = SessionLocal()
        try:
            service = HoldService(session, clock=clock)
            barrier.wait(timeout=10)
            outcome = service.create_hold(request, Actor(id=actor_id, role="customer"), FLOW_QUICK)
            successes.append(outcome.booking.id)
        except SlotConflictException as exc:
            conflicts.append(exc)
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=attempt, args=(actor,)) for actor in ("customer-1", "customer-2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len(successes) == 1
    assert len(conflicts) == 1
    assert [c["booking_id"] for c in conflicts[0].conflicts] == successes
