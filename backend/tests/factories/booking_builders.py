"""Builders for venues, courts, bookings and requests used across the Courtside tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from courtside.core.security import create_access_token
from courtside.core.ulid_helper import generate_booking_code
from courtside.models import Booking, BookingStatus, Court, Venue
from courtside.repositories.booking_repository import BookingRepository
from courtside.schemas.booking import HoldCreate

# Thursday morning; play happens on Friday (a weekday)
NOW = datetime(2025, 1, 9, 9, 0, tzinfo=timezone.utc)
PLAY_DATE = date(2025, 1, 10)

OWNER_ID = "owner-1"
CUSTOMER_ID = "customer-1"
OTHER_CUSTOMER_ID = "customer-2"
ADMIN_ID = "admin-1"

OPEN_ALL_WEEK = [
    {"day_of_week": day, "time_slots": [{"start": "06:00", "end": "22:00"}]} for day in range(7)
]
PRICING = [
    {"day_type": "weekday", "start": "06:00", "end": "17:00", "price_per_hour": 100000, "is_active": True},
    {"day_type": "weekday", "start": "17:00", "end": "22:00", "price_per_hour": 200000, "is_active": True},
    {"day_type": "weekend", "start": "06:00", "end": "22:00", "price_per_hour": 250000, "is_active": True},
]

EVENING_SLOT = {"start": "18:00", "end": "19:00"}


class FrozenClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


def seed_venue(db: Session, owner_id: str = OWNER_ID, court_count: int = 2) -> Dict[str, Any]:
    """Commit a venue with ``court_count`` courts open 06:00-22:00 every day."""
    venue = Venue(name="Riverside Badminton", owner_id=owner_id, address="12 River Rd")
    db.add(venue)
    db.flush()
    courts: List[Court] = []
    for index in range(court_count):
        court = Court(
            venue_id=venue.id,
            name=f"Court {index + 1}",
            sport_type="badminton",
            default_availability=OPEN_ALL_WEEK,
            pricing=PRICING,
        )
        db.add(court)
        courts.append(court)
    db.commit()
    return {"venue": venue, "courts": courts}


def make_hold_request(
    venue: Venue,
    courts: Sequence[Court],
    slots: Optional[List[Dict[str, Any]]] = None,
    booking_date: date = PLAY_DATE,
    payment_method: Optional[str] = None,
    customer_info: Optional[Dict[str, str]] = None,
) -> HoldCreate:
    return HoldCreate(
        venue_id=venue.id,
        court_ids=[court.id for court in courts],
        booking_date=booking_date,
        time_slots=slots or [dict(EVENING_SLOT)],
        payment_method=payment_method,
        customer_info=customer_info,
    )


def insert_booking(
    db: Session,
    venue: Venue,
    courts: Sequence[Court],
    *,
    status: str = BookingStatus.CONFIRMED.value,
    user_id: Optional[str] = CUSTOMER_ID,
    slots: Optional[List[Dict[str, Any]]] = None,
    hold_until: Optional[datetime] = None,
    booking_date: date = PLAY_DATE,
    total_price: int = 200000,
    **fields: Any,
) -> Booking:
    """
    Insert a booking row directly in ``status`` and commit.

    Holds default to a window ending five minutes after NOW.
    """
    if status in (BookingStatus.PENDING.value, BookingStatus.RESERVED.value) and hold_until is None:
        hold_until = NOW + timedelta(minutes=5)
    booking = BookingRepository(db).create_booking(
        [court.id for court in courts],
        booking_code=generate_booking_code(NOW),
        user_id=user_id,
        venue_id=venue.id,
        booking_date=booking_date,
        time_slots=slots or [dict(EVENING_SLOT, price=total_price)],
        total_price=total_price,
        status=status,
        hold_until=hold_until,
        created_at=NOW,
        **fields,
    )
    db.commit()
    return booking


def auth_headers(actor_id: str, role: str = "customer") -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(actor_id, role)}"}
