# backend/courtside/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. The gateway client
and the clock are dependencies of their own so tests can override them.
"""

from functools import lru_cache
import logging
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.config import settings
from ...core.timezone_utils import utc_now
from ...integrations import PayOSClient, build_payment_gateway
from ...services.availability_service import AvailabilityService
from ...services.base import Clock
from ...services.booking_lifecycle import BookingLifecycle
from ...services.expiration_sweeper import ExpirationSweeper
from ...services.hold_service import HoldService
from ...services.payment_reconciler import PaymentReconciler
from .database import get_db

logger = logging.getLogger(__name__)


def get_clock() -> Clock:
    """Wall clock used by services; overridden in tests."""
    return utc_now


@lru_cache(maxsize=1)
def get_payment_gateway_singleton() -> Optional[PayOSClient]:
    """One gateway client per process; the fake keeps its links in memory."""
    gateway = build_payment_gateway(settings)
    logger.info(
        "Payment gateway selection",
        extra={
            "site_mode": settings.site_mode,
            "payos_fake": settings.payos_fake,
            "gateway": type(gateway).__name__ if gateway is not None else None,
        },
    )
    return gateway


def get_payment_gateway() -> Optional[PayOSClient]:
    return get_payment_gateway_singleton()


def get_availability_service(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> AvailabilityService:
    return AvailabilityService(db, clock=clock)


def get_booking_lifecycle(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> BookingLifecycle:
    return BookingLifecycle(db, clock=clock)


def get_hold_service(
    db: Session = Depends(get_db),
    gateway: Optional[PayOSClient] = Depends(get_payment_gateway),
    clock: Clock = Depends(get_clock),
) -> HoldService:
    """Get HoldService with the configured gateway client."""
    return HoldService(db, payment_gateway=gateway, clock=clock)


def get_payment_reconciler(
    db: Session = Depends(get_db),
    gateway: Optional[PayOSClient] = Depends(get_payment_gateway),
    clock: Clock = Depends(get_clock),
) -> PaymentReconciler:
    return PaymentReconciler(db, payment_gateway=gateway, clock=clock)


def get_expiration_sweeper(
    db: Session = Depends(get_db),
    gateway: Optional[PayOSClient] = Depends(get_payment_gateway),
    clock: Clock = Depends(get_clock),
) -> ExpirationSweeper:
    return ExpirationSweeper(db, payment_gateway=gateway, clock=clock)
