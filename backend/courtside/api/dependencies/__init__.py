# backend/courtside/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_actor, get_current_actor_optional, require_admin
from .database import get_db
from .services import (
    get_availability_service,
    get_booking_lifecycle,
    get_clock,
    get_expiration_sweeper,
    get_hold_service,
    get_payment_gateway,
    get_payment_reconciler,
)

__all__ = [
    # Auth
    "get_current_actor",
    "get_current_actor_optional",
    "require_admin",
    # Database
    "get_db",
    # Services
    "get_availability_service",
    "get_booking_lifecycle",
    "get_clock",
    "get_expiration_sweeper",
    "get_hold_service",
    "get_payment_gateway",
    "get_payment_reconciler",
]
