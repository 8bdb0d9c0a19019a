"""Process-wide logging setup for the worker and its CLI."""
from __future__ import annotations

import logging
from typing import Optional

from apps.kyc_worker.config import WorkerConfig, get_worker_settings

_NOISY_LOGGERS = ("apscheduler.executors.default", "botocore", "urllib3")


class SkippedTickFilter(logging.Filter):
    """Drops APScheduler's per-tick warning while a long document is still in flight."""

    def filter(self, record: logging.LogRecord) -> bool:
        return "maximum number of running instances reached" not in record.getMessage()


def configure_logging(settings: Optional[WorkerConfig] = None, *, level: Optional[str] = None) -> None:
    settings = settings or get_worker_settings()
    resolved = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        format=settings.log_format,
        force=True,
    )
    # One line per tick otherwise
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    scheduler_logger = logging.getLogger("apscheduler.scheduler")
    if not any(isinstance(f, SkippedTickFilter) for f in scheduler_logger.filters):
        scheduler_logger.addFilter(SkippedTickFilter())
