# backend/courtside/services/expiration_sweeper.py
"""
Expiration Sweeper for Courtside

Terminates holds whose window has passed. Availability already ignores a
lapsed hold, so the sweeper is about final state: it asks the gateway what
happened to the booking's order first, which rescues payments whose webhook
never arrived, and only then cancels or expires.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import (
    REASON_GATEWAY_EXPIRED,
    REASON_GATEWAY_UNREACHABLE,
    REASON_NO_PAYMENT_METHOD,
    REASON_PAYMENT_NOT_COMPLETED,
)
from ..core.timezone_utils import as_utc, isoformat_utc
from ..integrations.payos_client import (
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_PAID,
    PayOSClient,
    PayOSError,
)
from ..models.booking import HOLD_STATUSES, Booking, PaymentStatus
from ..models.payment import ReconciliationSource
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.payment_repository import PaymentRepository
from .base import BaseService, Clock
from .booking_lifecycle import BookingLifecycle
from .payment_reconciler import OUTCOME_CANCELLED, OUTCOME_CONFIRMED, PaymentReconciler

logger = logging.getLogger(__name__)

SWEEP_CONFIRMED = "confirmed"
SWEEP_CANCELLED = "cancelled"
SWEEP_EXPIRED = "expired"
SWEEP_SKIPPED = "skipped"
SWEEP_FAILED = "failed"


@dataclass
class SweepReport:
    scanned: int = 0
    confirmed: int = 0
    cancelled: int = 0
    expired: int = 0
    skipped: int = 0
    sessions_expired: int = 0
    failed: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)
    processed_at: Optional[datetime] = None

    def count(self, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned": self.scanned,
            "confirmed": self.confirmed,
            "cancelled": self.cancelled,
            "expired": self.expired,
            "skipped": self.skipped,
            "sessions_expired": self.sessions_expired,
            "failed": self.failed,
            "failures": list(self.failures),
            "processed_at": isoformat_utc(self.processed_at),
        }


class ExpirationSweeper(BaseService):
    """Finalizes stale holds in batches; one bad booking never stops the batch."""

    def __init__(
        self,
        db: Session,
        payment_gateway: Optional[PayOSClient] = None,
        booking_repository: Optional[BookingRepository] = None,
        payment_repository: Optional[PaymentRepository] = None,
        clock: Optional[Clock] = None,
        reconciler: Optional[PaymentReconciler] = None,
        batch_size: Optional[int] = None,
    ):
        super().__init__(db, clock=clock)
        self.payment_gateway = payment_gateway
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.payment_repository = (
            payment_repository or RepositoryFactory.create_payment_repository(db)
        )
        self.lifecycle = BookingLifecycle(
            db, booking_repository=self.booking_repository, clock=self._clock
        )
        self.reconciler = reconciler or PaymentReconciler(
            db,
            payment_gateway=payment_gateway,
            booking_repository=self.booking_repository,
            payment_repository=self.payment_repository,
            clock=self._clock,
        )
        self.batch_size = batch_size or settings.sweep_batch_size

    @BaseService.measure_operation("sweep_expired_holds")
    def sweep(self, now: Optional[datetime] = None, max_age_minutes: int = 0) -> SweepReport:
        """
        Finalize holds whose ``hold_until`` is at or before ``now - max_age_minutes``.

        Args:
            now: Sweep time; defaults to the service clock
            max_age_minutes: Grace period past ``hold_until``

        Returns:
            SweepReport with per-outcome counts and per-booking failures
        """
        now = as_utc(now) if now is not None else self.now()
        cutoff = now - timedelta(minutes=max(0, max_age_minutes))
        report = SweepReport(processed_at=now)

        candidates = self.booking_repository.find_stale_holds(cutoff, self.batch_size)
        report.scanned = len(candidates)

        for booking in candidates:
            booking_id = booking.id
            try:
                outcome = self._sweep_booking(booking, cutoff)
            except Exception as exc:
                self.logger.exception(
                    f"Sweep failed for booking {booking_id}",
                    extra={"booking_id": booking_id},
                )
                report.failed += 1
                report.failures.append({"booking_id": booking_id, "error": str(exc)})
                prometheus_metrics.inc_sweeper_booking(SWEEP_FAILED)
                continue
            report.count(outcome)
            prometheus_metrics.inc_sweeper_booking(outcome)

        with self.transaction():
            report.sessions_expired = self.payment_repository.expire_stale_sessions(now)

        if report.scanned or report.sessions_expired:
            self.logger.info(
                f"Sweep processed {report.scanned} holds",
                extra={"event": "hold_sweep", **{k: v for k, v in report.to_dict().items() if k != "failures"}},
            )
        return report

    def _sweep_booking(self, booking: Booking, cutoff: datetime) -> str:
        order_ref = booking.gateway_order_ref
        if not order_ref:
            return self._terminate(booking, "cancel", REASON_NO_PAYMENT_METHOD, cutoff)

        order_code = int(order_ref)
        try:
            if self.payment_gateway is None:
                raise PayOSError("Payment gateway is not configured")
            info = self.payment_gateway.get_payment_info(order_code)
        except PayOSError as exc:
            outcome = self._terminate(booking, "cancel", REASON_GATEWAY_UNREACHABLE, cutoff)
            if outcome != SWEEP_SKIPPED:
                self.logger.error(
                    f"Cancelled hold {booking.id} without a gateway answer: {exc}",
                    extra={
                        "event": "manual_reconciliation_required",
                        "booking_id": booking.id,
                        "order_code": order_code,
                    },
                )
            return outcome

        source = ReconciliationSource.SWEEPER.value
        if info.status == STATUS_PAID:
            result = self.reconciler.apply_gateway_status(booking, info, source)
            if result.outcome == OUTCOME_CONFIRMED:
                return SWEEP_CONFIRMED
            # Paid too late: the slot went to someone else
            return SWEEP_CANCELLED if result.outcome == OUTCOME_CANCELLED else SWEEP_SKIPPED
        if info.status == STATUS_CANCELLED:
            result = self.reconciler.apply_gateway_status(booking, info, source)
            return SWEEP_CANCELLED if result.outcome == OUTCOME_CANCELLED else SWEEP_SKIPPED
        if info.status == STATUS_EXPIRED:
            return self._terminate(booking, "expire", REASON_GATEWAY_EXPIRED, cutoff)

        # Still open at the gateway: close the link before giving the slot back
        try:
            self.payment_gateway.cancel_payment_link(order_code, REASON_PAYMENT_NOT_COMPLETED)
        except PayOSError as exc:
            self.logger.warning(
                f"Could not cancel gateway link {order_code}: {exc}",
                extra={"booking_id": booking.id, "order_code": order_code},
            )
        return self._terminate(booking, "cancel", REASON_PAYMENT_NOT_COMPLETED, cutoff)

    def _terminate(self, booking: Booking, action: str, reason: str, cutoff: datetime) -> str:
        """Cancel or expire the hold if it is still a hold past ``cutoff``; otherwise skip."""
        with self.transaction():
            result = self.lifecycle.transition(
                booking.id,
                action,
                reason=reason,
                values={"payment_status": PaymentStatus.EXPIRED.value},
                extra_criteria=[
                    Booking.status.in_(sorted(HOLD_STATUSES)),
                    Booking.hold_until <= cutoff,
                ],
                idempotent=True,
            )
            if result.applied:
                self.payment_repository.expire_open_sessions_for_booking(booking.id)

        if not result.applied:
            return SWEEP_SKIPPED
        return SWEEP_EXPIRED if action == "expire" else SWEEP_CANCELLED
