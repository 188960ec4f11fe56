# backend/courtside/repositories/__init__.py
"""
Repository Pattern Implementation for Courtside

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories, including conditional updates
- RepositoryFactory: Factory for creating repository instances
- BookingRepository: Conflict candidates, stale hold scans, status compare-and-set
- CourtRepository: Court lookups and the per-court hold lock
- PaymentRepository: Payment sessions and the transaction ledger

Usage:
    from courtside.repositories import RepositoryFactory

    repository = RepositoryFactory.create_booking_repository(db)
    bookings = repository.get_bookings_for_conflict_check(court_ids, booking_date)
"""

from .base_repository import BaseRepository, IRepository
from .booking_repository import BookingRepository
from .court_repository import CourtRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "CourtRepository",
    "IRepository",
    "PaymentRepository",
    "RepositoryFactory",
]
