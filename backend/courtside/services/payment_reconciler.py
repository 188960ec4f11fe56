# backend/courtside/services/payment_reconciler.py
"""
Payment Reconciler for Courtside

Applies gateway payment results to bookings. The webhook, the client's
verify poll, the browser return/cancel redirects and the expiration
sweeper all converge on ``apply_gateway_status``; every write there is a
guarded lifecycle transition, so a repeated or late delivery is a no-op.
"""

from dataclasses import dataclass
from datetime import datetime
import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import REASON_GATEWAY_CANCELLED, REASON_PAID_AFTER_SLOT_TAKEN
from ..core.exceptions import (
    GatewayException,
    NotFoundException,
    SignatureInvalidException,
    ValidationException,
)
from ..core.timezone_utils import as_utc
from ..integrations.payos_client import (
    PAYOS_SUCCESS_CODE,
    STATUS_CANCELLED,
    STATUS_PAID,
    PaymentInfo,
    PayOSClient,
    PayOSError,
)
from ..models.booking import (
    HOLD_STATUSES,
    TERMINAL_STATUSES,
    Booking,
    BookingStatus,
    PaymentStatus,
)
from ..models.payment import (
    OPEN_SESSION_STATUSES,
    PaymentSession,
    PaymentSessionStatus,
    PaymentTransactionStatus,
    ReconciliationSource,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.court_repository import CourtRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.payment_repository import PaymentRepository
from .availability_service import AvailabilityService
from .base import BaseService, Clock
from .booking_lifecycle import BookingLifecycle

logger = logging.getLogger(__name__)

OUTCOME_CONFIRMED = "confirmed"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_PENDING = "pending"
OUTCOME_UNKNOWN = "unknown"
OUTCOME_ALREADY_APPLIED = "already_applied"
OUTCOME_NOT_FOUND = "not_found"

# Statuses a paid booking can already be in when the gateway result repeats
PAID_STATUSES = frozenset(
    {
        BookingStatus.CONFIRMED.value,
        BookingStatus.IN_PROGRESS.value,
        BookingStatus.COMPLETED.value,
    }
)

# A late PAID still completes a session that was superseded or swept
UNSETTLED_SESSION_STATUSES = OPEN_SESSION_STATUSES | {
    PaymentSessionStatus.FAILED.value,
    PaymentSessionStatus.EXPIRED.value,
}

RESULT_PAGE_SUCCESS = "/booking/payment/success"
RESULT_PAGE_CANCELLED = "/booking/payment/cancelled"
RESULT_PAGE_PENDING = "/booking/payment/pending"

ConfirmationHook = Callable[[Booking], None]


@dataclass
class ReconcileResult:
    outcome: str
    source: str
    booking: Optional[Booking] = None
    order_code: Optional[int] = None
    gateway_status: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "source": self.source,
            "order_code": self.order_code,
            "gateway_status": self.gateway_status,
            "message": self.message,
            "booking": self.booking.to_dict() if self.booking is not None else None,
        }


def _log_confirmation(booking: Booking) -> None:
    logger.info(
        f"Booking {booking.booking_code} confirmed by payment",
        extra={"booking_id": booking.id, "event": "booking_confirmed"},
    )


class PaymentReconciler(BaseService):
    """Turns gateway payment state into booking state."""

    def __init__(
        self,
        db: Session,
        payment_gateway: Optional[PayOSClient] = None,
        booking_repository: Optional[BookingRepository] = None,
        payment_repository: Optional[PaymentRepository] = None,
        court_repository: Optional[CourtRepository] = None,
        clock: Optional[Clock] = None,
        on_confirmed: Optional[ConfirmationHook] = None,
    ):
        super().__init__(db, clock=clock)
        self.payment_gateway = payment_gateway
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.payment_repository = (
            payment_repository or RepositoryFactory.create_payment_repository(db)
        )
        self.court_repository = court_repository or RepositoryFactory.create_court_repository(db)
        self.lifecycle = BookingLifecycle(
            db, booking_repository=self.booking_repository, clock=self._clock
        )
        self.availability = AvailabilityService(
            db,
            booking_repository=self.booking_repository,
            court_repository=self.court_repository,
            clock=self._clock,
        )
        self.on_confirmed = on_confirmed or _log_confirmation

    # Convergence point

    def apply_gateway_status(
        self, booking: Booking, info: PaymentInfo, source: str
    ) -> ReconcileResult:
        """
        Apply one gateway result to ``booking``.

        PAID confirms the booking, CANCELLED cancels a hold whose current order
        it is; any other status changes nothing.
        """
        if info.status == STATUS_PAID:
            result = self._apply_paid(booking, info, source)
        elif info.status == STATUS_CANCELLED:
            result = self._apply_cancelled(booking, info, source)
        else:
            result = ReconcileResult(
                outcome=OUTCOME_PENDING,
                source=source,
                booking=booking,
                order_code=info.order_code,
                gateway_status=info.status,
            )
        prometheus_metrics.inc_payment_reconciliation(source, result.outcome)
        return result

    def _apply_paid(self, booking: Booking, info: PaymentInfo, source: str) -> ReconcileResult:
        now = self.now()
        payment_ref = info.transaction_ref or f"payos:{info.order_code}"
        paid_values = {
            "payment_status": PaymentStatus.PAID.value,
            "gateway_transaction_ref": payment_ref,
        }

        slot_lost = False
        with self.transaction():
            self.booking_repository.refresh(booking)
            if booking.status in HOLD_STATUSES and self._slot_taken_after_lapse(booking, now):
                # Keep the money on record against a cancelled booking for refund
                transition = self.lifecycle.transition(
                    booking.id,
                    "cancel",
                    reason=REASON_PAID_AFTER_SLOT_TAKEN,
                    values={**paid_values, "paid_at": now},
                    extra_criteria=[Booking.status.in_(sorted(HOLD_STATUSES))],
                    idempotent=True,
                )
                slot_lost = transition.applied
                applied = False
                booking = transition.booking
            elif booking.status in HOLD_STATUSES:
                transition = self.lifecycle.transition(
                    booking.id, "confirm_payment", values=paid_values, idempotent=True
                )
                applied = transition.applied
                booking = transition.booking
            elif booking.status in PAID_STATUSES and booking.payment_status != PaymentStatus.PAID.value:
                # Owner-approved quick hold paid afterwards; status stays put
                applied = (
                    self.booking_repository.compare_and_set_status(
                        booking.id,
                        PAID_STATUSES,
                        {**paid_values, "paid_at": now},
                        extra_criteria=[Booking.payment_status != PaymentStatus.PAID.value],
                    )
                    == 1
                )
                self.booking_repository.refresh(booking)
            else:
                applied = False

            if applied or slot_lost:
                session = self.payment_repository.get_session_by_order_code(info.order_code)
                if session is not None:
                    self.payment_repository.transition_session(
                        session.id,
                        UNSETTLED_SESSION_STATUSES,
                        status=PaymentSessionStatus.COMPLETED.value,
                        completed_at=now,
                        gateway_response=info.raw or None,
                    )
                if not self.payment_repository.transaction_exists(payment_ref):
                    self.payment_repository.record_transaction(
                        payment_ref=payment_ref,
                        booking_id=booking.id,
                        session_id=session.id if session is not None else None,
                        amount=info.amount_paid or info.amount or booking.total_price,
                        status=PaymentTransactionStatus.SUCCESS.value,
                        source=source,
                        processed_at=now,
                    )

        if slot_lost:
            self.logger.error(
                f"Payment arrived after hold {booking.id} lapsed and its slots were taken; refund required",
                extra={
                    "event": "manual_reconciliation_required",
                    "booking_id": booking.id,
                    "order_code": info.order_code,
                    "payment_ref": payment_ref,
                    "source": source,
                },
            )
            return ReconcileResult(
                outcome=OUTCOME_CANCELLED,
                source=source,
                booking=booking,
                order_code=info.order_code,
                gateway_status=info.status,
                message=REASON_PAID_AFTER_SLOT_TAKEN,
            )

        if not applied:
            if booking.payment_status != PaymentStatus.PAID.value:
                # Money arrived for a booking that already ended
                self.logger.error(
                    f"Payment received for {booking.status} booking {booking.id}; refund required",
                    extra={
                        "event": "manual_reconciliation_required",
                        "booking_id": booking.id,
                        "order_code": info.order_code,
                        "payment_ref": payment_ref,
                        "source": source,
                    },
                )
            return ReconcileResult(
                outcome=OUTCOME_ALREADY_APPLIED,
                source=source,
                booking=booking,
                order_code=info.order_code,
                gateway_status=info.status,
            )

        paid_amount = info.amount_paid or info.amount
        if paid_amount is not None and paid_amount < booking.total_price:
            self.logger.warning(
                f"Booking {booking.id} paid {paid_amount} of {booking.total_price}",
                extra={"booking_id": booking.id, "order_code": info.order_code},
            )

        self.log_operation(
            "payment_confirmed", booking_id=booking.id, order_code=info.order_code, source=source
        )
        try:
            self.on_confirmed(booking)
        except Exception:
            self.logger.exception(f"Confirmation hook failed for booking {booking.id}")

        return ReconcileResult(
            outcome=OUTCOME_CONFIRMED,
            source=source,
            booking=booking,
            order_code=info.order_code,
            gateway_status=info.status,
        )

    def _slot_taken_after_lapse(self, booking: Booking, now: datetime) -> bool:
        """
        True when a lapsed hold's slots now belong to another active booking.

        Locks the courts the way hold creation does, so no new hold can land
        between this check and the caller's write.
        """
        hold_until = as_utc(booking.hold_until)
        if hold_until is not None and hold_until > now:
            return False
        court_ids = booking.court_ids
        self.court_repository.lock_for_hold(court_ids)
        result = self.availability.check(
            court_ids,
            booking.booking_date,
            booking.time_slots or [],
            now=now,
            exclude_booking_id=booking.id,
        )
        return not result.is_available

    def _apply_cancelled(
        self, booking: Booking, info: PaymentInfo, source: str
    ) -> ReconcileResult:
        with self.transaction():
            transition = self.lifecycle.transition(
                booking.id,
                "cancel",
                reason=REASON_GATEWAY_CANCELLED,
                values={"payment_status": PaymentStatus.CANCELLED.value},
                # Only a live hold whose current order this is; a superseded link may be cancelled freely
                extra_criteria=[
                    Booking.status.in_(sorted(HOLD_STATUSES)),
                    Booking.gateway_order_ref == str(info.order_code),
                ],
                idempotent=True,
            )
            session = self.payment_repository.get_session_by_order_code(info.order_code)
            if session is not None:
                self.payment_repository.transition_session(
                    session.id,
                    OPEN_SESSION_STATUSES,
                    status=PaymentSessionStatus.FAILED.value,
                    error_message=REASON_GATEWAY_CANCELLED,
                )

        return ReconcileResult(
            outcome=OUTCOME_CANCELLED if transition.applied else OUTCOME_ALREADY_APPLIED,
            source=source,
            booking=transition.booking,
            order_code=info.order_code,
            gateway_status=info.status,
            message=REASON_GATEWAY_CANCELLED,
        )

    # Triggers

    def _require_gateway(self) -> PayOSClient:
        if self.payment_gateway is None:
            raise GatewayException("Payment gateway is not configured")
        return self.payment_gateway

    def _find_booking(self, order_code: int) -> Optional[Booking]:
        session: Optional[PaymentSession] = self.payment_repository.get_session_by_order_code(
            order_code
        )
        if session is not None:
            return self.booking_repository.get_by_id(session.booking_id)
        return self.booking_repository.get_by_order_ref(str(order_code))

    def _query_gateway(self, order_code: int, source: str) -> Tuple[Optional[PaymentInfo], Optional[str]]:
        try:
            return self._require_gateway().get_payment_info(order_code), None
        except PayOSError as exc:
            self.logger.warning(
                f"Gateway status lookup failed for order {order_code}: {exc}",
                extra={"order_code": order_code, "source": source},
            )
            return None, str(exc)

    @BaseService.measure_operation("handle_webhook")
    def handle_webhook(self, raw_body: bytes, signature: Optional[str] = None) -> ReconcileResult:
        """
        Process a gateway webhook delivery.

        Raises:
            SignatureInvalidException: The signature does not match the raw body
            ValidationException: Signed but unparseable body
        """
        source = ReconciliationSource.WEBHOOK.value
        gateway = self._require_gateway()
        if not gateway.verify_webhook_signature(raw_body, signature):
            prometheus_metrics.inc_webhook_signature_failure()
            self.logger.warning(
                "Rejected payment webhook with invalid signature",
                extra={"event": "webhook_signature_invalid", "body_bytes": len(raw_body)},
            )
            raise SignatureInvalidException()

        try:
            payload = json.loads(raw_body.decode("utf-8"))
            data = payload.get("data") or {}
            order_code = int(data["orderCode"])
        except (UnicodeDecodeError, json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError):
            raise ValidationException("Webhook body is missing data.orderCode")

        booking = self._find_booking(order_code)
        if booking is None:
            self.logger.warning(
                f"Webhook for unknown order {order_code}",
                extra={"event": "webhook_unknown_order", "order_code": order_code},
            )
            prometheus_metrics.inc_payment_reconciliation(source, OUTCOME_NOT_FOUND)
            return ReconcileResult(outcome=OUTCOME_NOT_FOUND, source=source, order_code=order_code)

        # The envelope code only acknowledges the request; data.code is the payment's
        code = data.get("code")
        if code is not None and str(code) == PAYOS_SUCCESS_CODE:
            info = PaymentInfo(
                order_code=order_code,
                status=STATUS_PAID,
                amount=data.get("amount"),
                amount_paid=data.get("amount"),
                transaction_ref=data.get("reference"),
                paid_at=data.get("transactionDateTime"),
                raw=data,
            )
        else:
            queried, error = self._query_gateway(order_code, source)
            if queried is None:
                prometheus_metrics.inc_payment_reconciliation(source, OUTCOME_UNKNOWN)
                return ReconcileResult(
                    outcome=OUTCOME_UNKNOWN,
                    source=source,
                    booking=booking,
                    order_code=order_code,
                    message=error,
                )
            info = queried

        return self.apply_gateway_status(booking, info, source)

    @BaseService.measure_operation("verify_payment")
    def verify(
        self,
        order_code: Optional[int] = None,
        booking_id: Optional[str] = None,
        source: str = ReconciliationSource.VERIFY.value,
    ) -> ReconcileResult:
        """
        Re-query the gateway for a booking's current order and apply the result.

        A gateway failure yields outcome ``unknown`` ("still pending, try later").

        Raises:
            ValidationException: Neither an order code nor a booking id was given
            NotFoundException: No booking matches
        """
        if order_code is None and not booking_id:
            raise ValidationException("Provide an order code or a booking id")

        if booking_id:
            booking = self.booking_repository.get_by_id(booking_id)
            if booking is None:
                raise NotFoundException(f"Booking {booking_id} not found")
            if order_code is None and booking.gateway_order_ref:
                order_code = int(booking.gateway_order_ref)
        else:
            booking = self._find_booking(int(order_code))
            if booking is None:
                raise NotFoundException(f"No booking for order {order_code}")
        self.booking_repository.refresh(booking)

        if order_code is None or booking.payment_status == PaymentStatus.PAID.value:
            outcome = OUTCOME_PENDING if booking.status in HOLD_STATUSES else OUTCOME_ALREADY_APPLIED
            prometheus_metrics.inc_payment_reconciliation(source, outcome)
            return ReconcileResult(outcome=outcome, source=source, booking=booking, order_code=order_code)

        info, error = self._query_gateway(int(order_code), source)
        if info is None:
            prometheus_metrics.inc_payment_reconciliation(source, OUTCOME_UNKNOWN)
            return ReconcileResult(
                outcome=OUTCOME_UNKNOWN,
                source=source,
                booking=booking,
                order_code=int(order_code),
                message=error,
            )
        return self.apply_gateway_status(booking, info, source)

    def handle_redirect(self, order_code: Optional[int], kind: str) -> str:
        """
        Re-verify after the browser comes back from checkout; return the frontend URL.

        The query parameters only identify the order; the outcome always comes
        from the gateway.
        """
        source = (
            ReconciliationSource.CANCEL.value if kind == "cancel" else ReconciliationSource.RETURN.value
        )
        if order_code is None:
            return self._result_url(RESULT_PAGE_CANCELLED, reason="missing order code")
        try:
            result = self.verify(order_code=order_code, source=source)
        except NotFoundException:
            self.logger.warning(
                f"Redirect for unknown order {order_code}",
                extra={"order_code": order_code, "kind": kind},
            )
            return self._result_url(RESULT_PAGE_CANCELLED, order_code=order_code, reason="booking not found")

        booking = result.booking
        if booking is None:
            return self._result_url(RESULT_PAGE_PENDING, order_code=order_code)
        if booking.payment_status == PaymentStatus.PAID.value and booking.status in PAID_STATUSES:
            return self._result_url(RESULT_PAGE_SUCCESS, booking_id=booking.id, order_code=order_code)
        if booking.status in TERMINAL_STATUSES:
            reason = booking.cancellation_reason or booking.status_reason or booking.status
            return self._result_url(
                RESULT_PAGE_CANCELLED, booking_id=booking.id, order_code=order_code, reason=reason
            )
        return self._result_url(RESULT_PAGE_PENDING, booking_id=booking.id, order_code=order_code)

    @staticmethod
    def _result_url(
        page: str,
        booking_id: Optional[str] = None,
        order_code: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> str:
        params = {"bookingId": booking_id, "orderCode": order_code, "reason": reason}
        query = urlencode({key: value for key, value in params.items() if value is not None})
        url = f"{settings.frontend_url}{page}"
        return f"{url}?{query}" if query else url
