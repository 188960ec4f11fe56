# backend/courtside/repositories/payment_repository.py
"""
Payment Repository for Courtside

Payment sessions (one per gateway attempt) and the transaction ledger.
"""

from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..models.payment import (
    OPEN_SESSION_STATUSES,
    PaymentSession,
    PaymentSessionStatus,
    PaymentTransaction,
)
from .base_repository import BaseRepository


class PaymentRepository(BaseRepository[PaymentSession]):
    """Repository for payment sessions and transactions."""

    def __init__(self, db: Session):
        super().__init__(db, PaymentSession)

    # Sessions

    def create_session(self, **fields: Any) -> PaymentSession:
        return self.create(**fields)

    def get_session_by_order_code(self, order_code: int) -> Optional[PaymentSession]:
        return self.find_one_by(order_code=int(order_code))

    def get_open_session(self, booking_id: str, now: datetime) -> Optional[PaymentSession]:
        """The pending/processing session for the booking that has not passed ``expires_at``."""
        query = (
            self._build_query()
            .filter(
                PaymentSession.booking_id == booking_id,
                PaymentSession.status.in_(sorted(OPEN_SESSION_STATUSES)),
                PaymentSession.expires_at > now,
            )
            .order_by(PaymentSession.created_at.desc(), PaymentSession.id.desc())
        )
        results = self._execute_query(query.limit(1))
        return results[0] if results else None

    def transition_session(
        self,
        session_id: str,
        from_statuses: Iterable[str],
        **values: Any,
    ) -> int:
        """Conditional session status write; returns the matched row count."""
        columns = {getattr(PaymentSession, key): value for key, value in values.items()}
        return self.conditional_update(
            [PaymentSession.id == session_id, PaymentSession.status.in_(sorted(from_statuses))],
            columns,
        )

    def expire_open_sessions_for_booking(self, booking_id: str) -> int:
        """Expire every pending/processing session of the booking."""
        return self.conditional_update(
            [
                PaymentSession.booking_id == booking_id,
                PaymentSession.status.in_(sorted(OPEN_SESSION_STATUSES)),
            ],
            {PaymentSession.status: PaymentSessionStatus.EXPIRED.value},
        )

    def expire_stale_sessions(self, now: datetime) -> int:
        """Expire pending/processing sessions whose ``expires_at`` has passed."""
        return self.conditional_update(
            [
                PaymentSession.status.in_(sorted(OPEN_SESSION_STATUSES)),
                PaymentSession.expires_at <= now,
            ],
            {PaymentSession.status: PaymentSessionStatus.EXPIRED.value},
        )

    # Transactions

    def transaction_exists(self, payment_ref: str) -> bool:
        return (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.payment_ref == payment_ref)
            .first()
            is not None
        )

    def record_transaction(self, **fields: Any) -> PaymentTransaction:
        """Append a ledger row. Does not commit."""
        entry = PaymentTransaction(**fields)
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_transactions(self, booking_id: str) -> List[PaymentTransaction]:
        return (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.booking_id == booking_id)
            .order_by(PaymentTransaction.processed_at)
            .all()
        )
