# backend/courtside/routes/v1/__init__.py
"""
API v1 routes.

Mounted under /api/v1 in main.py.
"""

from . import bookings, courts, payments, webhooks

__all__ = ["bookings", "courts", "payments", "webhooks"]
