# backend/courtside/repositories/court_repository.py
"""
Court Repository for Courtside

Court lookups plus the per-court write lock used by hold creation.
"""

from typing import Iterable, List

from sqlalchemy.orm import Query, Session, joinedload

from ..models.venue import Court
from .base_repository import BaseRepository


class CourtRepository(BaseRepository[Court]):
    """Repository for court data access."""

    def __init__(self, db: Session):
        super().__init__(db, Court)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Court.venue))

    def get_many(self, court_ids: Iterable[str]) -> List[Court]:
        """Courts for the ids, in the order requested; unknown ids are skipped."""
        ids = list(court_ids)
        if not ids:
            return []
        found = self._execute_query(
            self._apply_eager_loading(self._build_query()).filter(Court.id.in_(ids))
        )
        by_id = {court.id: court for court in found}
        return [by_id[court_id] for court_id in ids if court_id in by_id]

    def lock_for_hold(self, court_ids: Iterable[str]) -> int:
        """
        Bump ``hold_version`` on each court, one row at a time in sorted id order.

        The UPDATE takes a row write lock on PostgreSQL and the database
        write lock on SQLite, so a second hold on any of these courts waits
        until this transaction ends. Sorted order keeps two multi-court
        holds from deadlocking.
        """
        touched = 0
        for court_id in sorted(set(court_ids)):
            touched += self.conditional_update(
                [Court.id == court_id],
                {Court.hold_version: Court.hold_version + 1},
            )
        return touched
