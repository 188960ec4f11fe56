# backend/courtside/services/booking_lifecycle.py
"""
Booking lifecycle state machine for Courtside.

Every status change goes through ``BookingLifecycle.transition``, which issues
one conditional UPDATE guarded by the allowed source statuses and checks the
row count. A lost race therefore never overwrites a terminal booking.

    pending -> reserved -> confirmed -> in_progress -> completed
    pending/reserved/confirmed -> cancelled | expired
    confirmed -> no_show
"""

from dataclasses import dataclass
import logging
from typing import Any, Dict, FrozenSet, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.constants import MAX_REASON_LENGTH, REASON_HOLD_EXPIRED_MESSAGE
from ..core.exceptions import (
    ForbiddenException,
    InvalidStateTransitionException,
    NotFoundException,
    ValidationException,
)
from ..core.security import Actor
from ..models.booking import (
    HOLD_STATUSES,
    TERMINAL_STATUSES,
    Booking,
    BookingStatus,
    PaymentStatus,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService, Clock

logger = logging.getLogger(__name__)

PENDING = BookingStatus.PENDING.value
RESERVED = BookingStatus.RESERVED.value
CONFIRMED = BookingStatus.CONFIRMED.value
IN_PROGRESS = BookingStatus.IN_PROGRESS.value

# Where a transition writes its reason
REASON_NONE = None
REASON_STATUS = "status_reason"
REASON_CANCELLATION = "cancellation_reason"


@dataclass(frozen=True)
class Transition:
    action: str
    from_statuses: FrozenSet[str]
    to_status: str
    stamp: str
    reason_field: Optional[str] = REASON_STATUS
    reason_required: bool = False


TRANSITIONS: Dict[str, Transition] = {
    t.action: t
    for t in (
        Transition("start_payment", frozenset({PENDING}), RESERVED, "reserved_at"),
        Transition("approve", frozenset({PENDING}), CONFIRMED, "confirmed_at"),
        Transition("confirm_payment", frozenset({PENDING, RESERVED}), CONFIRMED, "paid_at"),
        Transition(
            "reject",
            frozenset({PENDING, RESERVED}),
            BookingStatus.CANCELLED.value,
            "cancelled_at",
            reason_field=REASON_CANCELLATION,
            reason_required=True,
        ),
        Transition(
            "cancel",
            frozenset({PENDING, RESERVED, CONFIRMED}),
            BookingStatus.CANCELLED.value,
            "cancelled_at",
            reason_field=REASON_CANCELLATION,
            reason_required=True,
        ),
        Transition(
            "release",
            frozenset({PENDING, RESERVED}),
            BookingStatus.CANCELLED.value,
            "cancelled_at",
            reason_field=REASON_CANCELLATION,
            reason_required=True,
        ),
        Transition(
            "expire",
            frozenset({PENDING, RESERVED, CONFIRMED}),
            BookingStatus.EXPIRED.value,
            "expired_at",
            reason_required=True,
        ),
        Transition("checkin", frozenset({CONFIRMED}), IN_PROGRESS, "checked_in_at"),
        Transition("complete", frozenset({IN_PROGRESS}), BookingStatus.COMPLETED.value, "completed_at"),
        Transition("no_show", frozenset({CONFIRMED}), BookingStatus.NO_SHOW.value, "no_show_at"),
    )
}


@dataclass
class TransitionResult:
    """Outcome of a guarded write; ``applied`` is False only for idempotent no-ops."""

    booking: Booking
    applied: bool
    action: str
    previous_status: Optional[str] = None


class BookingLifecycle(BaseService):
    """
    Guarded booking transitions.

    ``transition`` does not commit; callers that combine it with other writes
    (payment sessions, ledger rows) own the transaction. The public owner and
    customer actions below commit on their own.
    """

    def __init__(
        self,
        db: Session,
        booking_repository: Optional[BookingRepository] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock=clock)
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )

    # Core compare-and-set

    def transition(
        self,
        booking_id: str,
        action: str,
        *,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        values: Optional[Dict[str, Any]] = None,
        extra_criteria: Sequence[Any] = (),
        guard_message: Optional[str] = None,
        idempotent: bool = False,
    ) -> TransitionResult:
        """
        Apply ``action`` to the booking with a conditional UPDATE.

        Args:
            booking_id: Booking to move
            action: Key of TRANSITIONS
            actor_id: Recorded as ``cancelled_by`` for cancelling actions
            reason: Free-text reason; required for reject/cancel/release/expire
            values: Extra columns written in the same statement
            extra_criteria: Additional WHERE clauses (e.g. hold still live)
            guard_message: Message raised when only ``extra_criteria`` failed
            idempotent: Return ``applied=False`` instead of raising on a lost race

        Raises:
            ValidationException: Missing required reason
            NotFoundException: Unknown booking
            InvalidStateTransitionException: Status does not allow the action
        """
        transition = TRANSITIONS.get(action)
        if transition is None:
            raise ValidationException(f"Unknown booking action: {action}")

        reason = self._normalize_reason(reason)
        if transition.reason_required and not reason:
            raise ValidationException(f"A reason is required to {action} a booking")

        now = self.now()
        update: Dict[str, Any] = {"status": transition.to_status, transition.stamp: now}
        if transition.to_status not in HOLD_STATUSES:
            update["hold_until"] = None
        if reason and transition.reason_field:
            update[transition.reason_field] = reason
        if transition.reason_field == REASON_CANCELLATION and actor_id:
            update["cancelled_by"] = actor_id
        if values:
            update.update(values)

        rowcount = self.booking_repository.compare_and_set_status(
            booking_id, transition.from_statuses, update, extra_criteria=extra_criteria
        )

        current = self._reload(booking_id)
        if rowcount == 1:
            prometheus_metrics.inc_booking_transition(action)
            self.logger.info(
                f"Booking {booking_id} {action}: -> {transition.to_status}",
                extra={"booking_id": booking_id, "action": action, "status": transition.to_status},
            )
            return TransitionResult(booking=current, applied=True, action=action)

        if idempotent and (
            current.status in TERMINAL_STATUSES or current.status in transition.from_statuses
        ):
            self.logger.info(
                f"Booking {booking_id} {action} not applied; already {current.status}",
                extra={"booking_id": booking_id, "action": action, "status": current.status},
            )
            return TransitionResult(
                booking=current, applied=False, action=action, previous_status=current.status
            )

        if current.status in transition.from_statuses:
            # Status allowed it; an extra guard (hold lapsed) did not
            raise InvalidStateTransitionException(
                action,
                current.status,
                message=guard_message or REASON_HOLD_EXPIRED_MESSAGE,
                booking_id=booking_id,
            )
        raise InvalidStateTransitionException(action, current.status, booking_id=booking_id)

    def _reload(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")
        self.booking_repository.refresh(booking)
        return booking

    @staticmethod
    def _normalize_reason(reason: Optional[str]) -> Optional[str]:
        if reason is None:
            return None
        reason = reason.strip()
        return reason[:MAX_REASON_LENGTH] or None

    # Authorization helpers

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")
        return booking

    @staticmethod
    def is_venue_owner(booking: Booking, actor: Actor) -> bool:
        venue = booking.venue
        return venue is not None and venue.owner_id == actor.id

    def ensure_owner(self, booking: Booking, actor: Actor) -> None:
        if actor.is_admin or self.is_venue_owner(booking, actor):
            return
        raise ForbiddenException("Only the venue owner or an admin may perform this action")

    def ensure_can_view(self, booking: Booking, actor: Optional[Actor]) -> None:
        """Guest bookings are readable by id; member bookings by holder, owner or admin."""
        if booking.user_id is None:
            return
        if actor is None:
            raise ForbiddenException("Authentication required to view this booking")
        if actor.is_admin or booking.user_id == actor.id or self.is_venue_owner(booking, actor):
            return
        raise ForbiddenException("You do not have access to this booking")

    def view_booking(self, booking_id: str, actor: Optional[Actor]) -> Booking:
        """Fetch a booking and check the actor may read it."""
        booking = self.get_booking(booking_id)
        self.ensure_can_view(booking, actor)
        return booking

    # Owner / customer actions (each commits)

    @BaseService.measure_operation("approve_booking")
    def approve(self, booking_id: str, actor: Actor, reason: Optional[str] = None) -> Booking:
        """
        Confirm a live quick hold.

        A lapsed hold no longer blocks its slots, so someone else may hold
        them by now; it cannot be approved.
        """
        booking = self.get_booking(booking_id)
        self.ensure_owner(booking, actor)
        now = self.now()
        with self.transaction():
            result = self.transition(
                booking_id,
                "approve",
                actor_id=actor.id,
                reason=reason,
                extra_criteria=[Booking.hold_until > now],
                guard_message=REASON_HOLD_EXPIRED_MESSAGE,
            )
        return result.booking

    @BaseService.measure_operation("reject_booking")
    def reject(self, booking_id: str, actor: Actor, reason: Optional[str]) -> Booking:
        booking = self.get_booking(booking_id)
        self.ensure_owner(booking, actor)
        with self.transaction():
            result = self.transition(
                booking_id,
                "reject",
                actor_id=actor.id,
                reason=reason,
                values={"payment_status": PaymentStatus.CANCELLED.value},
            )
        return result.booking

    @BaseService.measure_operation("cancel_booking")
    def cancel(self, booking_id: str, actor: Actor, reason: Optional[str]) -> Booking:
        """Holder, venue owner or admin may cancel a hold or a confirmed booking."""
        booking = self.get_booking(booking_id)
        if not (actor.is_admin or booking.user_id == actor.id or self.is_venue_owner(booking, actor)):
            raise ForbiddenException("Only the holder, the venue owner or an admin may cancel")
        with self.transaction():
            result = self.transition(booking_id, "cancel", actor_id=actor.id, reason=reason)
        return result.booking

    @BaseService.measure_operation("checkin_booking")
    def checkin(self, booking_id: str, actor: Actor) -> Booking:
        booking = self.get_booking(booking_id)
        self.ensure_owner(booking, actor)
        with self.transaction():
            result = self.transition(booking_id, "checkin", actor_id=actor.id)
        return result.booking

    @BaseService.measure_operation("complete_booking")
    def complete(self, booking_id: str, actor: Actor) -> Booking:
        booking = self.get_booking(booking_id)
        self.ensure_owner(booking, actor)
        with self.transaction():
            result = self.transition(booking_id, "complete", actor_id=actor.id)
        return result.booking

    @BaseService.measure_operation("mark_no_show")
    def mark_no_show(self, booking_id: str, actor: Actor, reason: Optional[str] = None) -> Booking:
        booking = self.get_booking(booking_id)
        self.ensure_owner(booking, actor)
        with self.transaction():
            result = self.transition(booking_id, "no_show", actor_id=actor.id, reason=reason)
        return result.booking
