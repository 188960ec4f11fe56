# backend/courtside/repositories/booking_repository.py
"""
Booking Repository for Courtside

Data access for bookings: conflict candidates per court and date, stale hold
scans for the sweeper, and the compare-and-set status write that every
lifecycle transition goes through.
"""

from datetime import date, datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload

from ..core.exceptions import RepositoryException
from ..models.booking import ACTIVE_STATUSES, HOLD_STATUSES, Booking, BookingCourt
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(selectinload(Booking.court_links))

    def create_booking(self, court_ids: Sequence[str], **fields: Any) -> Booking:
        """Insert a booking and its ordered court links. Does not commit."""
        booking = Booking(**fields)
        booking.court_links = [
            BookingCourt(court_id=court_id, position=position)
            for position, court_id in enumerate(court_ids)
        ]
        try:
            self.db.add(booking)
            self.db.flush()
            return booking
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating booking: {str(e)}")
            raise RepositoryException(f"Failed to create booking: {str(e)}")

    def get_by_order_ref(self, order_ref: str) -> Optional[Booking]:
        """Booking whose most recent gateway order is ``order_ref``."""
        try:
            return (
                self._apply_eager_loading(self._build_query())
                .filter(Booking.gateway_order_ref == str(order_ref))
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting booking by order ref {order_ref}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve booking: {str(e)}")

    def get_bookings_for_conflict_check(
        self,
        court_ids: Iterable[str],
        booking_date: date,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Bookings on any of the courts for the date with status pending, reserved or confirmed.

        Hold expiry is not filtered here; the availability checker decides
        which holds are still live at its ``now``.
        """
        court_ids = list(court_ids)
        if not court_ids:
            return []
        query = (
            self._build_query()
            .join(BookingCourt, BookingCourt.booking_id == Booking.id)
            .filter(
                BookingCourt.court_id.in_(court_ids),
                Booking.booking_date == booking_date,
                Booking.status.in_(sorted(ACTIVE_STATUSES)),
            )
            .options(selectinload(Booking.court_links))
            .distinct()
            .order_by(Booking.created_at, Booking.id)
        )
        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)
        return self._execute_query(query)

    def find_stale_holds(self, cutoff: datetime, limit: int) -> List[Booking]:
        """Pending/reserved bookings whose hold lapsed at or before ``cutoff``, oldest first."""
        query = (
            self._build_query()
            .filter(
                Booking.status.in_(sorted(HOLD_STATUSES)),
                Booking.hold_until.isnot(None),
                Booking.hold_until <= cutoff,
            )
            .order_by(Booking.hold_until, Booking.id)
            .limit(limit)
        )
        return self._execute_query(query)

    def compare_and_set_status(
        self,
        booking_id: str,
        from_statuses: Iterable[str],
        values: Dict[str, Any],
        extra_criteria: Sequence[Any] = (),
    ) -> int:
        """
        ``UPDATE bookings SET ... WHERE id = :id AND status IN (:from_statuses)``.

        ``extra_criteria`` narrows the match further (e.g. the hold is still live).
        Returns the matched row count (0 or 1).
        """
        columns = {getattr(Booking, key): value for key, value in values.items()}
        return self.conditional_update(
            [Booking.id == booking_id, Booking.status.in_(sorted(from_statuses)), *extra_criteria],
            columns,
        )

    def set_gateway_order_ref(self, booking_id: str, order_ref: str) -> int:
        """Record the latest gateway order; only meaningful while the booking is a hold."""
        return self.conditional_update(
            [Booking.id == booking_id, Booking.status.in_(sorted(HOLD_STATUSES))],
            {Booking.gateway_order_ref: str(order_ref)},
        )
