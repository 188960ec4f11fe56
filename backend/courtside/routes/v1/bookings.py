# backend/courtside/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to HoldService, BookingLifecycle,
AvailabilityService and ExpirationSweeper.

Endpoints:
    POST /hold - Quick hold (pending, 5 minutes); member or guest
    POST / - Payment-session booking (reserved, 15 minutes)
    POST /check-availability - Availability for courts, a date and slots
    POST /cleanup - Admin: sweep lapsed holds now
    GET /{booking_id} - Booking details
    POST /{booking_id}/payment - Start or retry gateway payment
    POST /{booking_id}/release - Holder gives up a hold
    POST /{booking_id}/cancel - Cancel a hold or a confirmed booking
    POST /{booking_id}/approve - Owner confirms a quick hold
    POST /{booking_id}/reject - Owner declines a hold
    POST /{booking_id}/checkin - Owner checks the customer in
    POST /{booking_id}/checkout - Owner completes the booking
    POST /{booking_id}/no-show - Owner marks a no-show
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, status

from ...api.dependencies import (
    get_availability_service,
    get_booking_lifecycle,
    get_current_actor,
    get_current_actor_optional,
    get_expiration_sweeper,
    get_hold_service,
    require_admin,
)
from ...core.exceptions import DomainException, handle_domain_exception
from ...core.security import Actor
from ...schemas.booking import (
    AvailabilityCheckRequest,
    AvailabilityResponse,
    BookingResponse,
    CleanupRequest,
    HoldCreate,
    HoldResponse,
    ReasonRequest,
    StartPaymentRequest,
    SweepReportResponse,
)
from ...services.availability_service import AvailabilityService
from ...services.booking_lifecycle import BookingLifecycle
from ...services.expiration_sweeper import ExpirationSweeper
from ...services.hold_service import FLOW_PAYMENT, FLOW_QUICK, HoldService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post(
    "/hold",
    response_model=HoldResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Slots already booked or held"}},
)
async def create_quick_hold(
    hold_data: HoldCreate = Body(...),
    actor: Optional[Actor] = Depends(get_current_actor_optional),
    hold_service: HoldService = Depends(get_hold_service),
) -> HoldResponse:
    """Hold courts for five minutes while the customer decides how to pay."""
    try:
        outcome = await asyncio.to_thread(hold_service.create_hold, hold_data, actor, FLOW_QUICK)
        return HoldResponse(**outcome.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "",
    response_model=HoldResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Slots already booked or held"}},
)
async def create_payment_booking(
    hold_data: HoldCreate = Body(...),
    actor: Optional[Actor] = Depends(get_current_actor_optional),
    hold_service: HoldService = Depends(get_hold_service),
) -> HoldResponse:
    """
    Reserve courts for fifteen minutes and open a gateway checkout.

    A gateway failure keeps the reservation; ``payment_error`` tells the
    client to retry through ``POST /{booking_id}/payment``.
    """
    try:
        outcome = await asyncio.to_thread(hold_service.create_hold, hold_data, actor, FLOW_PAYMENT)
        return HoldResponse(**outcome.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/check-availability", response_model=AvailabilityResponse)
async def check_availability(
    check_data: AvailabilityCheckRequest = Body(...),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    """Check requested slots on every listed court (all courts must be free)."""
    try:
        result = await asyncio.to_thread(
            availability_service.check,
            check_data.court_ids,
            check_data.booking_date,
            check_data.time_slots,
            None,
            check_data.exclude_booking_id,
        )
        return AvailabilityResponse(**result.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/cleanup", response_model=SweepReportResponse)
async def cleanup_expired_holds(
    cleanup_data: Optional[CleanupRequest] = Body(None),
    admin: Actor = Depends(require_admin),
    sweeper: ExpirationSweeper = Depends(get_expiration_sweeper),
) -> SweepReportResponse:
    """
    Run the expiration sweep synchronously.

    Requires: admin role
    """
    try:
        report = await asyncio.to_thread(
            sweeper.sweep, None, (cleanup_data or CleanupRequest()).max_age_minutes
        )
        logger.info(
            f"Manual hold sweep by {admin.id}",
            extra={"actor_id": admin.id, "scanned": report.scanned, "failed": report.failed},
        )
        return SweepReportResponse(**report.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Dynamic routes (with path parameters)
# ============================================================================


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    actor: Optional[Actor] = Depends(get_current_actor_optional),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(lifecycle.view_booking, booking_id, actor)
        return BookingResponse(**booking.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/payment", response_model=HoldResponse)
async def start_payment(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    payment_data: Optional[StartPaymentRequest] = Body(None),
    actor: Optional[Actor] = Depends(get_current_actor_optional),
    hold_service: HoldService = Depends(get_hold_service),
) -> HoldResponse:
    """Upgrade a quick hold to a payment booking, or retry a failed checkout."""
    try:
        outcome = await asyncio.to_thread(
            hold_service.start_payment,
            booking_id,
            actor,
            (payment_data or StartPaymentRequest()).payment_method,
        )
        return HoldResponse(**outcome.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/release", response_model=BookingResponse)
async def release_hold(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    hold_service: HoldService = Depends(get_hold_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(hold_service.release_hold, booking_id, actor)
        return BookingResponse(**booking.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    cancel_data: ReasonRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            lifecycle.cancel, booking_id, actor, cancel_data.reason
        )
        return BookingResponse(**booking.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/approve", response_model=BookingResponse)
async def approve_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    approve_data: Optional[ReasonRequest] = Body(None),
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            lifecycle.approve, booking_id, actor, approve_data.reason if approve_data else None
        )
        return BookingResponse(**booking.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    reject_data: ReasonRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            lifecycle.reject, booking_id, actor, reject_data.reason
        )
        return BookingResponse(**booking.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/checkin", response_model=BookingResponse)
async def checkin_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(lifecycle.checkin, booking_id, actor)
        return BookingResponse(**booking.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/checkout", response_model=BookingResponse)
async def checkout_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(lifecycle.complete, booking_id, actor)
        return BookingResponse(**booking.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/no-show", response_model=BookingResponse)
async def mark_no_show(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    no_show_data: Optional[ReasonRequest] = Body(None),
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            lifecycle.mark_no_show, booking_id, actor, no_show_data.reason if no_show_data else None
        )
        return BookingResponse(**booking.to_dict())
    except DomainException as e:
        handle_domain_exception(e)
