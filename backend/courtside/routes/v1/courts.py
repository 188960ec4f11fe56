# backend/courtside/routes/v1/courts.py
"""
Court routes - API v1

Endpoints:
    GET /{court_id}/availability - Per-slot view of one court for a date
"""

import asyncio
from datetime import date
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from ...api.dependencies import get_availability_service
from ...core.exceptions import DomainException, ValidationException, handle_domain_exception
from ...core.time_slots import TimeSlot, parse_slot_range
from ...schemas.booking import CourtAvailabilityResponse
from ...services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["courts-v1"])


def _parse_slots(raw: Optional[List[str]]) -> List[TimeSlot]:
    """``slots=18:00-19:00,19:00-20:00`` or the parameter repeated."""
    if not raw:
        return []
    ranges = [part for value in raw for part in value.split(",") if part.strip()]
    try:
        return [parse_slot_range(part) for part in ranges]
    except ValueError as exc:
        raise ValidationException(str(exc))


@router.get("/{court_id}/availability", response_model=CourtAvailabilityResponse)
async def get_court_availability(
    court_id: str = Path(..., min_length=1, description="Court id"),
    booking_date: date = Query(..., alias="date", description="Date of play, YYYY-MM-DD"),
    slots: Optional[List[str]] = Query(None, description="HH:MM-HH:MM ranges; default hourly"),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> CourtAvailabilityResponse:
    """
    Available, booked and held slots of a court.

    Without ``slots`` the court's opening hours for that weekday are split
    into hourly slots and priced from its pricing rules.
    """
    try:
        requested = _parse_slots(slots)
        view = await asyncio.to_thread(
            availability_service.court_day_view, court_id, booking_date, requested or None
        )
        return CourtAvailabilityResponse(**view)
    except DomainException as e:
        handle_domain_exception(e)
