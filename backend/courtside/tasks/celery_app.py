# backend/courtside/tasks/celery_app.py
"""
Celery application configuration for Courtside.

This module sets up the Celery app with Redis as the broker and backend,
configures task serialization and registers the hold maintenance tasks.
"""

import logging
import os
from typing import Any, Dict, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from courtside.core.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    # Priority: CELERY_BROKER_URL -> settings.redis_url
    broker_url = os.getenv("CELERY_BROKER_URL") or settings.redis_url
    # Ensure Redis URL includes database number
    if not any(broker_url.endswith(f"/{i}") for i in range(16)):
        broker_url = f"{broker_url}/0"

    result_backend = os.getenv("CELERY_RESULT_BACKEND") or broker_url

    celery_app = Celery(
        "courtside",
        broker=broker_url,
        backend=result_backend,
    )

    base_config: Dict[str, Any] = {
        # Task settings
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        "timezone": "UTC",
        "enable_utc": True,
        "result_expires": 3600,
        # Worker settings
        "worker_prefetch_multiplier": 1,
        "worker_max_tasks_per_child": 1000,
        # Task execution settings; a sweep must finish well inside its interval
        "task_soft_time_limit": 120,
        "task_time_limit": 180,
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "beat_schedule_filename": "celerybeat-schedule",
        "worker_hijack_root_logger": False,
        "worker_redirect_stdouts": True,
        "worker_redirect_stdouts_level": "INFO",
    }
    celery_app.conf.update(base_config)

    celery_app.conf.imports = tuple(
        set(celery_app.conf.imports or ()) | {"courtside.tasks.hold_tasks"}
    )
    celery_app.conf.task_routes = {
        "courtside.tasks.hold_tasks.*": {"queue": "holds"},
    }

    from courtside.tasks.beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule(settings.sweep_interval_seconds)

    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Base task that logs outcomes. Retries are left to each task."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logging.getLogger(__name__).error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name, "task_kwargs": str(kwargs)},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval: Any, task_id: str, args: Any, kwargs: Any) -> None:
        logging.getLogger(__name__).debug(
            f"Task {self.name}[{task_id}] completed successfully",
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_success(retval, task_id, args, kwargs)


celery_app.Task = cast(Type[Task], BaseTask)
