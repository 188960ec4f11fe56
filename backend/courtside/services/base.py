# backend/courtside/services/base.py
"""
Base Service Pattern for Courtside

Every booking service shares one Session, one clock and one way of
committing. Timings go to Prometheus through ``measure_operation``.
"""

from contextlib import contextmanager
from datetime import datetime
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException, ServiceException
from ..core.timezone_utils import as_utc, utc_now
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


class BaseService:
    """
    Base class for the booking services.

    Subclasses receive the request (or worker) Session and an optional
    clock; tests pass a frozen clock so hold windows are deterministic.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self._clock = clock or utc_now
        self.logger = logging.getLogger(self.__class__.__name__)

    def now(self) -> datetime:
        """Current time from the injected clock, always UTC-aware."""
        return cast(datetime, as_utc(self._clock()))

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Commit on clean exit, roll back on any error.

        Database failures are re-raised as ServiceException; domain
        exceptions pass through untouched so routes can map them.
        """
        try:
            yield self.db
            self.db.commit()
        except (SQLAlchemyError, RepositoryException) as e:
            self.logger.error("Transaction failed: %s", e)
            self.db.rollback()
            raise ServiceException(f"Database operation failed: {e}")
        except Exception as e:
            self.logger.debug("Transaction rolled back: %s", type(e).__name__)
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Record duration and outcome of a service call.

        Usage:
            @BaseService.measure_operation("create_hold")
            def create_hold(self, request, actor, flow): ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self, *args, **kwargs):
                started = time.perf_counter()
                error_type = None
                try:
                    return func(self, *args, **kwargs)
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - started
                    if elapsed > SLOW_OPERATION_SECONDS:
                        self.logger.warning(
                            "Slow operation detected: %s took %.2fs", operation_name, elapsed
                        )
                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="error" if error_type else "success",
                        error_type=error_type,
                    )

            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        """Structured INFO line; context lands on the record as extras."""
        self.logger.info("Operation: %s", operation, extra={"operation": operation, **context})
