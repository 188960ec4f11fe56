"""
Celery tasks for hold maintenance.

Finalizes lapsed holds on the beat interval. The sweep is safe to run
concurrently with request handlers and with itself: every write is a
guarded lifecycle transition.
"""

import logging
from typing import Any, Callable, Dict, List, ParamSpec, Protocol, TypedDict, TypeVar, cast

from celery.result import AsyncResult

from courtside.core.config import settings
from courtside.database import with_db_retry
from courtside.database.sessions import get_worker_session
from courtside.integrations.payos_client import build_payment_gateway
from courtside.services.expiration_sweeper import ExpirationSweeper
from courtside.tasks.beat_schedule import SWEEP_TASK_NAME
from courtside.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R", covariant=True)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


class SweepJobResults(TypedDict):
    scanned: int
    confirmed: int
    cancelled: int
    expired: int
    skipped: int
    sessions_expired: int
    failed: int
    failures: List[Dict[str, str]]
    processed_at: str


# The next beat run is the retry
@typed_task(bind=True, name=SWEEP_TASK_NAME, ignore_result=False)
def sweep_expired_holds(self: Any, max_age_minutes: int = 0) -> SweepJobResults:
    """
    Cancel, expire or rescue holds whose window has passed.

    Args:
        max_age_minutes: Grace period past ``hold_until`` before a hold is swept

    Returns:
        Dict with per-outcome counts and per-booking failures
    """

    def _run() -> Dict[str, Any]:
        with get_worker_session() as db:
            sweeper = ExpirationSweeper(db, payment_gateway=build_payment_gateway(settings))
            return sweeper.sweep(max_age_minutes=max_age_minutes).to_dict()

    report = with_db_retry("sweep_expired_holds", _run)
    if report["failed"]:
        logger.warning(
            f"Hold sweep finished with {report['failed']} failures",
            extra={"event": "hold_sweep_failures", "failures": report["failures"]},
        )
    return cast(SweepJobResults, report)
