"""Logging configuration for the metrics ETL."""

from __future__ import annotations

import contextvars
import logging
from collections.abc import Iterator
from contextlib import contextmanager

from rpm_metrics.config import settings

run_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id",
    default=None,
)
practice_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "practice_id",
    default=None,
)
period_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "period",
    default=None,
)

# Record attribute -> context variable
_CONTEXT_FIELDS = (
    ("run_id", run_id_var),
    ("practice", practice_id_var),
    ("period", period_var),
)


@contextmanager
def metrics_scope(practice_id: str | None = None, period: str | None = None) -> Iterator[None]:
    """Tag log records emitted inside the block with a practice and/or period."""
    tokens = []
    if practice_id is not None:
        tokens.append((practice_id_var, practice_id_var.set(practice_id)))
    if period is not None:
        tokens.append((period_var, period_var.set(period)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def _attach_context(record: logging.LogRecord) -> None:
    for name, var in _CONTEXT_FIELDS:
        if not getattr(record, name, None):
            setattr(record, name, var.get() or "-")


class RunIdFilter(logging.Filter):
    """Attach run_id, practice and period from contextvars to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        _attach_context(record)
        return True


def configure_logging(level: str | None = None) -> None:
    """Configure structured logging for the batch job."""
    factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = factory(*args, **kwargs)
        _attach_context(record)
        return record

    logging.setLogRecordFactory(record_factory)
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format=(
            "%(asctime)s %(levelname)s %(name)s %(message)s "
            "run_id=%(run_id)s practice=%(practice)s period=%(period)s"
        ),
    )
    root_logger = logging.getLogger()
    root_logger.addFilter(RunIdFilter())
    for handler in root_logger.handlers:
        handler.addFilter(RunIdFilter())
