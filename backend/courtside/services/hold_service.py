# backend/courtside/services/hold_service.py
"""
Hold Service for Courtside

Creates provisional bookings that expire at ``hold_until``, releases them,
and starts or retries payment for them.

Hold creation closes the check-then-act race: inside one transaction the
requested courts are write-locked (``hold_version`` bump, sorted order), the
availability check is re-run on that locked state, and only then is the
booking inserted. Payment-link creation happens after that commit so a slow
gateway never keeps courts locked.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import (
    GATEWAY_PAYMENT_METHODS,
    PAYMENT_HOLD_MINUTES,
    QUICK_HOLD_MINUTES,
    REASON_HOLD_EXPIRED_MESSAGE,
    REASON_RELEASED_BY_HOLDER,
)
from ..core.exceptions import (
    ForbiddenException,
    GatewayException,
    InvalidStateTransitionException,
    NotFoundException,
    SlotConflictException,
    ValidationException,
)
from ..core.security import Actor
from ..core.time_slots import TimeSlot, validate_slots
from ..core.timezone_utils import as_utc
from ..core.ulid_helper import generate_booking_code, generate_order_code
from ..integrations.payos_client import PaymentLink, PayOSClient, PayOSError
from ..models.booking import (
    HOLD_STATUSES,
    Booking,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
)
from ..models.payment import OPEN_SESSION_STATUSES, PaymentSession, PaymentSessionStatus
from ..models.venue import Court
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.court_repository import CourtRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.payment_repository import PaymentRepository
from ..schemas.booking import HoldCreate
from .availability_service import AvailabilityService, price_for_slot
from .base import BaseService, Clock
from .booking_lifecycle import BookingLifecycle

logger = logging.getLogger(__name__)

FLOW_QUICK = "quick"
FLOW_PAYMENT = "payment"

HOLD_MINUTES_BY_FLOW = {
    FLOW_QUICK: QUICK_HOLD_MINUTES,
    FLOW_PAYMENT: PAYMENT_HOLD_MINUTES,
}

RETURN_PATH = "/api/v1/payments/return"
CANCEL_PATH = "/api/v1/payments/cancel"


@dataclass
class HoldOutcome:
    """A hold plus its payment attempt, if one was made."""

    booking: Booking
    session: Optional[PaymentSession] = None
    payment_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "booking": self.booking.to_dict(),
            "payment": self.session.to_dict() if self.session is not None else None,
            "payment_error": self.payment_error,
        }


class HoldService(BaseService):
    """Creates, releases and pays for holds."""

    def __init__(
        self,
        db: Session,
        payment_gateway: Optional[PayOSClient] = None,
        booking_repository: Optional[BookingRepository] = None,
        court_repository: Optional[CourtRepository] = None,
        payment_repository: Optional[PaymentRepository] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock=clock)
        self.payment_gateway = payment_gateway
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.court_repository = court_repository or RepositoryFactory.create_court_repository(db)
        self.payment_repository = (
            payment_repository or RepositoryFactory.create_payment_repository(db)
        )
        self.availability = AvailabilityService(
            db,
            booking_repository=self.booking_repository,
            court_repository=self.court_repository,
            clock=self._clock,
        )
        self.lifecycle = BookingLifecycle(
            db, booking_repository=self.booking_repository, clock=self._clock
        )

    # Hold creation

    @BaseService.measure_operation("create_hold")
    def create_hold(self, request: HoldCreate, actor: Optional[Actor], flow: str) -> HoldOutcome:
        """
        Create a quick hold (pending, 5 min) or a payment booking (reserved, 15 min).

        Raises:
            ValidationException: Bad input (past date, malformed slots, missing prices)
            NotFoundException: Unknown court
            SlotConflictException: Another active booking overlaps a requested slot
        """
        if flow not in HOLD_MINUTES_BY_FLOW:
            raise ValidationException(f"Unknown hold flow: {flow}")

        method = request.payment_method
        if flow == FLOW_PAYMENT and method is None:
            method = PaymentMethod.PAYOS.value
        if flow == FLOW_PAYMENT and method not in GATEWAY_PAYMENT_METHODS:
            raise ValidationException(
                "A gateway payment method is required to create a payment booking",
                details={"supported_methods": sorted(GATEWAY_PAYMENT_METHODS)},
            )
        wants_gateway = method in GATEWAY_PAYMENT_METHODS
        if wants_gateway and self.payment_gateway is None:
            raise GatewayException("Payment gateway is not configured")

        customer = request.customer_info
        if actor is None and (customer is None or not customer.is_complete):
            raise ValidationException(
                "Guest holds require customer name and a phone number or email"
            )

        now = self.now()
        if request.booking_date < now.date():
            raise ValidationException("Cannot book a date in the past")

        courts = self._load_courts(request.venue_id, request.court_ids)
        priced_slots = self._price_slots(courts[0], request.booking_date, request.time_slots)
        total_price = sum(slot.price or 0 for slot in priced_slots) * len(courts)

        hold_minutes = HOLD_MINUTES_BY_FLOW[flow]
        status = BookingStatus.RESERVED.value if flow == FLOW_PAYMENT else BookingStatus.PENDING.value
        fields: Dict[str, Any] = {
            "booking_code": generate_booking_code(now, settings.booking_code_prefix),
            "user_id": actor.id if actor else None,
            "venue_id": request.venue_id,
            "booking_date": request.booking_date,
            "time_slots": [slot.to_dict() for slot in priced_slots],
            "total_price": total_price,
            "payment_method": method,
            "payment_status": PaymentStatus.PENDING.value,
            "status": status,
            "hold_until": now + timedelta(minutes=hold_minutes),
            "created_at": now,
            "reserved_at": now if flow == FLOW_PAYMENT else None,
            "customer_name": customer.name if customer else None,
            "customer_phone": customer.phone if customer else None,
            "customer_email": customer.email if customer else None,
        }

        try:
            with self.transaction():
                self.court_repository.lock_for_hold(request.court_ids)
                result = self.availability.check(
                    request.court_ids, request.booking_date, priced_slots, now=now
                )
                if not result.is_available:
                    raise SlotConflictException(result.conflicting_bookings)
                booking = self.booking_repository.create_booking(request.court_ids, **fields)
        except SlotConflictException as exc:
            prometheus_metrics.inc_hold(flow, "conflict")
            self.logger.info(
                f"Hold rejected: {len(exc.conflicts)} conflicting bookings",
                extra={"flow": flow, "court_ids": request.court_ids},
            )
            raise

        self.log_operation(
            "hold_created",
            booking_id=booking.id,
            flow=flow,
            court_ids=request.court_ids,
            hold_until=fields["hold_until"].isoformat(),
        )

        outcome = HoldOutcome(booking=booking)
        if wants_gateway:
            outcome.session, outcome.payment_error = self._open_payment_session(booking, method)
            self.booking_repository.refresh(booking)

        prometheus_metrics.inc_hold(flow, "payment_error" if outcome.payment_error else "created")
        return outcome

    def _load_courts(self, venue_id: str, court_ids: Sequence[str]) -> List[Court]:
        if not court_ids:
            raise ValidationException("At least one court is required")
        if len(set(court_ids)) != len(court_ids):
            raise ValidationException("Duplicate courts in request")

        courts = self.court_repository.get_many(court_ids)
        found = {court.id for court in courts}
        missing = [court_id for court_id in court_ids if court_id not in found]
        if missing:
            raise NotFoundException(f"Court not found: {', '.join(missing)}", details={"court_ids": missing})

        for court in courts:
            if court.venue_id != venue_id:
                raise ValidationException(f"Court {court.id} does not belong to venue {venue_id}")
            if not court.is_active:
                raise ValidationException(f"Court {court.id} is not accepting bookings")
        venue = courts[0].venue
        if venue is None or not venue.is_active:
            raise ValidationException(f"Venue {venue_id} is not accepting bookings")
        return courts

    @staticmethod
    def _price_slots(court: Court, booking_date: date, slots: Sequence[Any]) -> List[TimeSlot]:
        """Server pricing where a rule matches; otherwise the client price, which is then required."""
        try:
            requested = validate_slots(slots)
        except ValueError as exc:
            raise ValidationException(str(exc))
        if not requested:
            raise ValidationException("At least one time slot is required")

        priced: List[TimeSlot] = []
        for slot in requested:
            price = price_for_slot(court, booking_date, slot)
            if price is None:
                price = slot.price
            if price is None:
                raise ValidationException(
                    f"No price available for slot {slot.start}-{slot.end}",
                    details={"slot": {"start": slot.start, "end": slot.end}},
                )
            priced.append(TimeSlot(start=slot.start, end=slot.end, price=int(price)))
        return priced

    # Payment sessions

    def _open_payment_session(
        self, booking: Booking, method: str
    ) -> Tuple[PaymentSession, Optional[str]]:
        """
        Record a new session, then ask the gateway for a checkout link.

        A gateway failure leaves the hold in place: the session is marked
        failed with the error and the message is returned for the client.
        """
        now = self.now()
        hold_until = as_utc(booking.hold_until)
        order_code = generate_order_code(now)
        with self.transaction():
            self.payment_repository.expire_open_sessions_for_booking(booking.id)
            session = self.payment_repository.create_session(
                booking_id=booking.id,
                method=method,
                amount=booking.total_price,
                order_code=order_code,
                status=PaymentSessionStatus.PENDING.value,
                expires_at=hold_until,
                created_at=now,
            )
            self.booking_repository.set_gateway_order_ref(booking.id, str(order_code))

        try:
            link = self._create_link(booking, order_code, hold_until)
        except PayOSError as exc:
            error_message = str(exc)[:500]
            with self.transaction():
                self.payment_repository.transition_session(
                    session.id,
                    OPEN_SESSION_STATUSES,
                    status=PaymentSessionStatus.FAILED.value,
                    error_message=error_message,
                    gateway_response=exc.error_body if isinstance(exc.error_body, dict) else None,
                )
            self.payment_repository.refresh(session)
            self.logger.warning(
                f"Payment link creation failed for booking {booking.id}; hold kept",
                extra={"booking_id": booking.id, "order_code": order_code, "error": error_message},
            )
            return session, error_message

        with self.transaction():
            self.payment_repository.transition_session(
                session.id,
                OPEN_SESSION_STATUSES,
                checkout_url=link.checkout_url,
                qr_code=link.qr_code,
                payment_link_id=link.payment_link_id,
                gateway_response=link.raw or None,
            )
        self.payment_repository.refresh(session)
        return session, None

    def _create_link(
        self, booking: Booking, order_code: int, hold_until: Optional[datetime]
    ) -> PaymentLink:
        if self.payment_gateway is None:
            raise PayOSError("Payment gateway is not configured")
        return self.payment_gateway.create_payment_link(
            order_code=order_code,
            amount=booking.total_price,
            description=booking.booking_code,
            return_url=f"{settings.public_api_url}{RETURN_PATH}",
            cancel_url=f"{settings.public_api_url}{CANCEL_PATH}",
            buyer=booking.customer_info,
            expired_at=hold_until,
        )

    def _cancel_gateway_link(self, order_ref: Optional[str], reason: str) -> None:
        """Best effort; a failure is logged and otherwise ignored."""
        if not order_ref or self.payment_gateway is None:
            return
        try:
            self.payment_gateway.cancel_payment_link(int(order_ref), reason)
        except (PayOSError, ValueError) as exc:
            self.logger.warning(
                f"Could not cancel gateway link {order_ref}: {exc}",
                extra={"order_code": order_ref},
            )

    # Release and payment start

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")
        self.booking_repository.refresh(booking)
        return booking

    def _ensure_live_hold(self, booking: Booking, action: str) -> datetime:
        now = self.now()
        if booking.status not in HOLD_STATUSES:
            raise InvalidStateTransitionException(action, booking.status, booking_id=booking.id)
        hold_until = as_utc(booking.hold_until)
        if hold_until is None or hold_until <= now:
            raise InvalidStateTransitionException(
                action, booking.status, message=REASON_HOLD_EXPIRED_MESSAGE, booking_id=booking.id
            )
        return now

    @BaseService.measure_operation("release_hold")
    def release_hold(self, booking_id: str, actor: Actor) -> Booking:
        """
        Holder (or admin) gives up a hold.

        Raises:
            ForbiddenException: Not the holder; guest holds are admin-only
            InvalidStateTransitionException: Not a hold, or the hold has lapsed
        """
        booking = self._get_booking(booking_id)
        is_holder = booking.user_id is not None and booking.user_id == actor.id
        if not (is_holder or actor.is_admin):
            raise ForbiddenException("Only the holder or an admin may release this hold")

        now = self._ensure_live_hold(booking, "release")
        order_ref = booking.gateway_order_ref
        with self.transaction():
            result = self.lifecycle.transition(
                booking.id,
                "release",
                actor_id=actor.id,
                reason=REASON_RELEASED_BY_HOLDER,
                values={"payment_status": PaymentStatus.CANCELLED.value},
                extra_criteria=[Booking.hold_until > now],
                guard_message=REASON_HOLD_EXPIRED_MESSAGE,
            )
            self.payment_repository.expire_open_sessions_for_booking(booking.id)

        self._cancel_gateway_link(order_ref, REASON_RELEASED_BY_HOLDER)
        self.log_operation("hold_released", booking_id=booking.id, actor_id=actor.id)
        return result.booking

    @BaseService.measure_operation("start_payment")
    def start_payment(
        self, booking_id: str, actor: Optional[Actor], method: str = "payos"
    ) -> HoldOutcome:
        """
        Start or retry gateway payment for a live hold.

        A pending hold becomes reserved with a fresh 15-minute window; a
        reserved hold keeps its expiry. An open session is reused.
        """
        if method not in GATEWAY_PAYMENT_METHODS:
            raise ValidationException(
                f"Unsupported payment method: {method}",
                details={"supported_methods": sorted(GATEWAY_PAYMENT_METHODS)},
            )
        if self.payment_gateway is None:
            raise GatewayException("Payment gateway is not configured")

        booking = self._get_booking(booking_id)
        self._ensure_payer(booking, actor)
        now = self._ensure_live_hold(booking, "start_payment")

        superseded_ref: Optional[str] = None
        if booking.status == BookingStatus.PENDING.value:
            superseded_ref = booking.gateway_order_ref
            with self.transaction():
                result = self.lifecycle.transition(
                    booking.id,
                    "start_payment",
                    actor_id=actor.id if actor else None,
                    values={
                        "hold_until": now + timedelta(minutes=PAYMENT_HOLD_MINUTES),
                        "payment_method": method,
                    },
                    extra_criteria=[Booking.hold_until > now],
                    guard_message=REASON_HOLD_EXPIRED_MESSAGE,
                )
                # The quick-hold session expired with the old window
                self.payment_repository.expire_open_sessions_for_booking(booking.id)
            booking = result.booking
        else:
            open_session = self.payment_repository.get_open_session(booking.id, now)
            if open_session is not None:
                return HoldOutcome(booking=booking, session=open_session)

        if superseded_ref:
            self._cancel_gateway_link(superseded_ref, "superseded by a new payment session")

        session, error = self._open_payment_session(booking, method)
        self.booking_repository.refresh(booking)
        return HoldOutcome(booking=booking, session=session, payment_error=error)

    @staticmethod
    def _ensure_payer(booking: Booking, actor: Optional[Actor]) -> None:
        """Guest holds are paid by whoever holds the booking id; member holds by the holder."""
        if booking.user_id is None:
            return
        if actor is not None and (actor.is_admin or actor.id == booking.user_id):
            return
        raise ForbiddenException("Only the holder may pay for this hold")
