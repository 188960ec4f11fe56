# backend/courtside/tasks/__init__.py
"""
Celery tasks package for Courtside.

Run the worker and beat with:
    celery -A courtside.tasks worker -Q holds
    celery -A courtside.tasks beat
"""

from courtside.tasks.celery_app import BaseTask, celery_app
from courtside.tasks.hold_tasks import sweep_expired_holds

__all__ = ["BaseTask", "celery_app", "sweep_expired_holds"]
