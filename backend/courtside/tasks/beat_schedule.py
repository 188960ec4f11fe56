# backend/courtside/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for Courtside.

The hold sweep runs on a fixed interval rather than a crontab; the interval
is validated in settings to stay under half of the shortest hold.
"""

from datetime import timedelta
from typing import Any, Dict

SWEEP_TASK_NAME = "courtside.tasks.hold_tasks.sweep_expired_holds"


def get_beat_schedule(sweep_interval_seconds: int) -> Dict[str, Dict[str, Any]]:
    """
    Build the beat schedule.

    Args:
        sweep_interval_seconds: Seconds between hold sweeps

    Returns:
        Mapping of schedule entry name to Celery beat entry
    """
    return {
        "sweep-expired-holds": {
            "task": SWEEP_TASK_NAME,
            "schedule": timedelta(seconds=sweep_interval_seconds),
            "options": {
                "queue": "holds",
                # A sweep older than one interval is superseded by the next
                "expires": sweep_interval_seconds,
            },
        },
    }
