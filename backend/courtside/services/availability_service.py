# backend/courtside/services/availability_service.py
"""
Availability Service for Courtside

Answers "are these slots free on these courts for this date?" and builds the
per-slot court view with generated hourly slots and prices.

A booking blocks a slot when it is confirmed, or when it is a pending/reserved
hold whose ``hold_until`` is still in the future. Lapsed holds stop blocking
immediately, whether or not the sweeper has reaped them yet.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.constants import DEFAULT_SLOT_MINUTES, WEEKEND_DAYS
from ..core.exceptions import NotFoundException, ValidationException
from ..core.time_slots import (
    TimeSlot,
    minutes_to_time_str,
    overlaps,
    to_minutes,
    validate_slots,
)
from ..core.timezone_utils import as_utc, isoformat_utc
from ..models.booking import Booking, BookingStatus
from ..models.venue import Court
from ..repositories.booking_repository import BookingRepository
from ..repositories.court_repository import CourtRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService, Clock

logger = logging.getLogger(__name__)

SLOT_AVAILABLE = "available"
SLOT_BOOKED = "booked"
SLOT_HELD = "held"


@dataclass
class SlotAvailability:
    start: str
    end: str
    is_available: bool
    conflicts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "is_available": self.is_available,
            "conflicts": list(self.conflicts),
        }


@dataclass
class AvailabilityResult:
    is_available: bool
    slots: List[SlotAvailability]
    conflicting_bookings: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_available": self.is_available,
            "slots": [slot.to_dict() for slot in self.slots],
            "conflicting_bookings": list(self.conflicting_bookings),
        }


def day_of_week(value: date) -> int:
    """Weekday with 0 = Sunday .. 6 = Saturday."""
    return (value.weekday() + 1) % 7


def day_type_for(value: date) -> str:
    return "weekend" if day_of_week(value) in WEEKEND_DAYS else "weekday"


def conflict_summary(booking: Booking) -> Dict[str, Any]:
    return {
        "booking_id": booking.id,
        "booking_code": booking.booking_code,
        "court_ids": booking.court_ids,
        "status": booking.status,
        "holder_id": booking.user_id,
        "hold_until": isoformat_utc(booking.hold_until),
        "time_slots": list(booking.time_slots or []),
    }


def price_for_slot(court: Court, booking_date: date, slot: TimeSlot) -> Optional[int]:
    """
    Price of one slot from the court's pricing rules.

    The first active rule for the date's day type whose ``[start, end)``
    contains the slot start wins; the hourly price is prorated by duration.
    Returns None when no rule matches.
    """
    slot_start = slot.start_minutes
    duration = slot.end_minutes - slot_start
    for rule in court.active_pricing_rules(day_type_for(booking_date)):
        try:
            rule_start = to_minutes(rule["start"])
            rule_end = to_minutes(rule["end"])
        except (KeyError, ValueError):
            logger.warning(f"Ignoring malformed pricing rule on court {court.id}: {rule}")
            continue
        if rule_start <= slot_start < rule_end:
            price_per_hour = int(rule.get("price_per_hour") or 0)
            return round(price_per_hour * duration / 60)
    return None


def generate_court_slots(court: Court, booking_date: date) -> List[TimeSlot]:
    """Hourly slots inside the court's opening ranges for the date's weekday, priced."""
    slots: List[TimeSlot] = []
    for opening in court.opening_slots_for(day_of_week(booking_date)):
        try:
            current = to_minutes(opening["start"])
            block_end = to_minutes(opening["end"])
        except (KeyError, ValueError):
            logger.warning(f"Ignoring malformed opening range on court {court.id}: {opening}")
            continue
        while current + DEFAULT_SLOT_MINUTES <= block_end:
            slot = TimeSlot(
                start=minutes_to_time_str(current),
                end=minutes_to_time_str(current + DEFAULT_SLOT_MINUTES),
            )
            price = price_for_slot(court, booking_date, slot)
            slots.append(TimeSlot(start=slot.start, end=slot.end, price=price or 0))
            current += DEFAULT_SLOT_MINUTES
    return slots


class AvailabilityService(BaseService):
    """
    Conflict detection across one or more courts.

    The service reads through the caller's session, so HoldService can run
    ``check`` inside its locking transaction.
    """

    def __init__(
        self,
        db: Session,
        booking_repository: Optional[BookingRepository] = None,
        court_repository: Optional[CourtRepository] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock=clock)
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.court_repository = court_repository or RepositoryFactory.create_court_repository(db)

    def active_bookings(
        self,
        court_ids: Iterable[str],
        booking_date: date,
        now: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        candidates = self.booking_repository.get_bookings_for_conflict_check(
            court_ids, booking_date, exclude_booking_id
        )
        return [booking for booking in candidates if booking.is_active_at(now)]

    @BaseService.measure_operation("check_availability")
    def check(
        self,
        court_ids: Sequence[str],
        booking_date: date,
        slots: Sequence[Any],
        now: Optional[datetime] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> AvailabilityResult:
        """
        Check requested slots against active bookings on every requested court.

        Multiple courts use AND semantics. Zero requested slots is available.

        Raises:
            ValidationException: Malformed or self-overlapping slots
        """
        try:
            requested = validate_slots(slots)
        except ValueError as exc:
            raise ValidationException(str(exc))

        now = as_utc(now) or self.now()
        court_set = set(court_ids)
        active = self.active_bookings(court_ids, booking_date, now, exclude_booking_id)

        conflicting: Dict[str, Booking] = {}
        results: List[SlotAvailability] = []
        for slot in requested:
            slot_conflicts: List[str] = []
            for booking in active:
                if not court_set.intersection(booking.court_ids):
                    continue
                if any(overlaps(slot, existing) for existing in booking.time_slots or []):
                    slot_conflicts.append(booking.id)
                    conflicting.setdefault(booking.id, booking)
            results.append(
                SlotAvailability(
                    start=slot.start,
                    end=slot.end,
                    is_available=not slot_conflicts,
                    conflicts=slot_conflicts,
                )
            )

        if conflicting:
            self.logger.info(
                f"Found {len(conflicting)} conflicting bookings for courts {sorted(court_set)} "
                f"on {booking_date}"
            )

        return AvailabilityResult(
            is_available=not conflicting,
            slots=results,
            conflicting_bookings=[conflict_summary(b) for b in conflicting.values()],
        )

    @BaseService.measure_operation("court_day_view")
    def court_day_view(
        self,
        court_id: str,
        booking_date: date,
        slots: Optional[Sequence[Any]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Per-slot view of one court for a date.

        Without ``slots`` the hourly slots are generated from the court's
        opening hours. Each slot is annotated ``available``, ``booked``
        (a confirmed booking) or ``held`` (a live hold, with holder and expiry).
        """
        court = self.court_repository.get_by_id(court_id)
        if court is None:
            raise NotFoundException(f"Court {court_id} not found")

        if slots:
            try:
                requested = validate_slots(slots)
            except ValueError as exc:
                raise ValidationException(str(exc))
            view_slots = [
                TimeSlot(
                    start=slot.start,
                    end=slot.end,
                    price=price_for_slot(court, booking_date, slot) or 0,
                )
                for slot in requested
            ]
        else:
            view_slots = generate_court_slots(court, booking_date)

        now = as_utc(now) or self.now()
        active = self.active_bookings([court_id], booking_date, now)

        annotated: List[Dict[str, Any]] = []
        for slot in view_slots:
            entry: Dict[str, Any] = {
                "start": slot.start,
                "end": slot.end,
                "price": slot.price,
                "status": SLOT_AVAILABLE,
                "booking_id": None,
                "holder_id": None,
                "hold_until": None,
            }
            for booking in active:
                if not any(overlaps(slot, existing) for existing in booking.time_slots or []):
                    continue
                if booking.status == BookingStatus.CONFIRMED.value:
                    entry.update(
                        status=SLOT_BOOKED,
                        booking_id=booking.id,
                        holder_id=None,
                        hold_until=None,
                    )
                    break
                entry.update(
                    status=SLOT_HELD,
                    booking_id=booking.id,
                    holder_id=booking.user_id,
                    hold_until=isoformat_utc(booking.hold_until),
                )
            annotated.append(entry)

        return {
            "court_id": court.id,
            "venue_id": court.venue_id,
            "date": booking_date.isoformat(),
            "day_type": day_type_for(booking_date),
            "slots": annotated,
        }
