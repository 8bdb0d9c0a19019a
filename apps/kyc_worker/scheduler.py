"""Interval jobs for the worker loop."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

log = logging.getLogger(__name__)


class PeriodicTasks:
    """Owns the scheduler and the handles of the jobs registered on it.

    Each job runs single-flight (``max_instances=1``); ticks missed while a
    previous run is still going are coalesced into one.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None) -> None:
        self._scheduler = scheduler or AsyncIOScheduler()
        self._jobs: Dict[str, Job] = {}
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    @property
    def job_ids(self) -> list[str]:
        return sorted(self._jobs)

    def add(self, job_id: str, func: Callable[[], Awaitable[Any]], interval_ms: int) -> Job:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        job = self._scheduler.add_job(
            func,
            "interval",
            seconds=interval_ms / 1000,
            id=job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._jobs[job_id] = job
        log.debug("Scheduled %s every %sms", job_id, interval_ms)
        return job

    def start(self) -> None:
        if not self._started:
            self._scheduler.start()
            self._started = True

    def cancel(self, job_id: str) -> bool:
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        try:
            job.remove()
        except JobLookupError:
            log.debug("Job %s already removed", job_id)
        return True

    def cancel_all(self) -> None:
        """Remove every job. Runs already in progress are left to finish."""

        for job_id in list(self._jobs):
            self.cancel(job_id)

    def shutdown(self) -> None:
        """Shut the scheduler down. Runs still in progress are cancelled."""

        # AsyncIOScheduler.shutdown is deferred to the event loop
        if self._started:
            self._started = False
            self._scheduler.shutdown(wait=False)
            log.info("Periodic tasks stopped")

    def stop(self) -> None:
        self.cancel_all()
        self.shutdown()
