from __future__ import annotations

from courtside.models import BookingStatus
from tests.factories.booking_builders import insert_booking


def _url(court_id: str) -> str:
    return f"/api/v1/courts/{court_id}/availability"


def test_full_day_view(client, court):
    response = client.get(_url(court.id), params={"date": "2025-01-10"})

    assert response.status_code == 200
    data = response.json()
    assert data["court_id"] == court.id
    assert data["day_type"] == "weekday"
    assert len(data["slots"]) == 16
    assert {slot["status"] for slot in data["slots"]} == {"available"}


def test_booked_and_held_slots(client, db, venue, court):
    confirmed = insert_booking(
        db, venue, [court], status=BookingStatus.CONFIRMED.value, slots=[{"start": "08:00", "end": "09:00"}]
    )
    held = insert_booking(db, venue, [court], status=BookingStatus.RESERVED.value)

    response = client.get(
        _url(court.id), params={"date": "2025-01-10", "slots": "08:00-09:00,18:00-19:00,20:00-21:00"}
    )

    slots = response.json()["slots"]
    assert [(slot["start"], slot["status"]) for slot in slots] == [
        ("08:00", "booked"),
        ("18:00", "held"),
        ("20:00", "available"),
    ]
    assert slots[0]["booking_id"] == confirmed.id
    assert slots[1]["booking_id"] == held.id
    assert slots[1]["holder_id"] == "customer-1"


def test_repeated_slot_parameter(client, court):
    response = client.get(
        _url(court.id), params=[("date", "2025-01-11"), ("slots", "18:00-19:00"), ("slots", "19:00-20:00")]
    )

    data = response.json()
    assert data["day_type"] == "weekend"
    assert [slot["price"] for slot in data["slots"]] == [250000, 250000]


def test_lapsed_hold_shows_available(client, db, venue, court, clock):
    insert_booking(db, venue, [court], status=BookingStatus.PENDING.value)
    clock.advance(minutes=5)

    response = client.get(_url(court.id), params={"date": "2025-01-10", "slots": "18:00-19:00"})
    assert response.json()["slots"][0]["status"] == "available"


def test_bad_input(client, court):
    assert client.get(_url(court.id), params={"date": "2025-01-10", "slots": "19:00-18:00"}).status_code == 400
    assert client.get(_url(court.id), params={"date": "10/01/2025"}).status_code == 400
    assert client.get(_url(court.id)).status_code == 400


def test_unknown_court(client, venue):
    response = client.get(_url("01J" + "0" * 22 + "Z"), params={"date": "2025-01-10"})
    assert response.status_code == 404
