"""Worker loop: polls the durable queue and applies retry, backoff and escalation."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from apps.kyc_worker.config import WorkerConfig
from apps.kyc_worker.database import DocumentRepository
from apps.kyc_worker.errors import EscalationError, PermanentFailure, StoreUnavailable
from apps.kyc_worker.escalation import EscalationService
from apps.kyc_worker.metrics import observe_job, record_promoted, update_store_available
from apps.kyc_worker.pipeline import DocumentPipeline, PipelineResult
from apps.kyc_worker.queues import DurableQueue, compute_backoff_delay
from apps.kyc_worker.recovery import recover_stuck_documents
from apps.kyc_worker.scheduler import PeriodicTasks

logger = logging.getLogger(__name__)

MAIN_JOB_ID = "kyc_worker_poll"
DELAYED_JOB_ID = "kyc_worker_delayed"

OUTCOME_COMPLETED = "completed"
OUTCOME_RETRIED = "retried"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class WorkerStatus:
    running: bool
    processing: bool
    store_available: bool
    recovery_pending: bool
    current_document: Optional[str]

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "processing": self.processing,
            "storeAvailable": self.store_available,
            "recoveryPending": self.recovery_pending,
            "currentDocument": self.current_document,
        }


class WorkerController:
    """Owns the worker lifecycle.

    ``start`` runs the startup recovery sweep (deferred to the first healthy
    probe when the store is down) and schedules the main and delayed ticks.
    No document is dequeued until recovery has run.
    """

    def __init__(
        self,
        queue: DurableQueue,
        pipeline: DocumentPipeline,
        documents: DocumentRepository,
        escalation: EscalationService,
        *,
        settings: WorkerConfig,
        tasks: Optional[PeriodicTasks] = None,
    ) -> None:
        self._queue = queue
        self._pipeline = pipeline
        self._documents = documents
        self._escalation = escalation
        self._settings = settings
        self._tasks = tasks or PeriodicTasks()

        self._running = False
        self._stopping = False
        self._processing = False
        self._current: Optional[str] = None
        self._store_available = False
        self._recovery_pending = True
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def tasks(self) -> PeriodicTasks:
        return self._tasks

    def status(self) -> WorkerStatus:
        return WorkerStatus(
            running=self._running,
            processing=self._processing,
            store_available=self._store_available,
            recovery_pending=self._recovery_pending,
            current_document=self._current,
        )

    async def start(self) -> None:
        if self._running:
            logger.warning("Worker already running")
            return

        logger.info(
            "Starting verification worker",
            extra={
                "poll_interval_ms": self._settings.poll_interval_ms,
                "delayed_poll_interval_ms": self._settings.delayed_poll_interval_ms,
                "max_retries": self._settings.max_retries,
            },
        )
        self._stopping = False
        if await self.check_store_health():
            logger.info("Queue store connected")
        else:
            logger.warning("Queue store unavailable at startup, recovery deferred until it responds")

        self._tasks.add(MAIN_JOB_ID, self._main_tick, self._settings.poll_interval_ms)
        self._tasks.add(DELAYED_JOB_ID, self._delayed_tick, self._settings.delayed_poll_interval_ms)
        self._tasks.start()
        self._running = True
        logger.info("Verification worker started")

    async def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop polling and wait for an in-flight document.

        Returns False when the in-flight document did not finish within the
        timeout; it stays in the processing set for the next startup sweep.
        """

        timeout = self._settings.shutdown_timeout_seconds if timeout is None else timeout
        self._stopping = True
        # The scheduler's executor cancels running ticks on shutdown, so only
        # remove the jobs until the in-flight document is done.
        self._tasks.cancel_all()

        drained = True
        if self._processing:
            logger.info("Waiting for in-flight document", extra={"document_id": self._current})
            try:
                await asyncio.wait_for(self._idle.wait(), timeout)
            except asyncio.TimeoutError:
                drained = False
                logger.warning(
                    "Shutdown timeout reached with a document in flight",
                    extra={"document_id": self._current, "timeout": timeout},
                )
        self._tasks.shutdown()
        self._running = False
        logger.info("Verification worker stopped")
        return drained

    async def check_store_health(self) -> bool:
        available = await self._queue.ping()
        if available != self._store_available:
            if available:
                logger.info("Queue store became available")
            else:
                logger.error("Queue store became unavailable")
        self._set_store_available(available)

        if available and self._recovery_pending:
            try:
                await recover_stuck_documents(self._queue)
            except StoreUnavailable:
                self._set_store_available(False)
                return False
            self._recovery_pending = False
        return available

    def _set_store_available(self, available: bool) -> None:
        self._store_available = available
        update_store_available(available)

    async def _main_tick(self) -> None:
        try:
            await self.check_store_health()
            await self.process_next()
        except StoreUnavailable:
            self._set_store_available(False)
        except Exception:
            logger.exception("Unexpected error in worker tick")

    async def _delayed_tick(self) -> None:
        try:
            await self.promote_delayed()
        except StoreUnavailable:
            self._set_store_available(False)
        except Exception:
            logger.exception("Unexpected error while promoting delayed documents")

    async def promote_delayed(self) -> int:
        if self._stopping or not self._store_available:
            return 0
        promoted = await self._queue.process_delayed_queue()
        record_promoted(promoted)
        return promoted

    async def process_next(self) -> Optional[str]:
        """Process at most one document. Returns the outcome, or None when idle."""

        if self._processing:
            logger.debug("Document already in flight, skipping tick")
            return None
        if self._stopping or not self._store_available or self._recovery_pending:
            return None

        self._processing = True
        self._idle.clear()
        try:
            document_id = await self._queue.dequeue()
            if document_id is None:
                return None
            self._current = document_id
            return await self._handle(document_id)
        finally:
            self._current = None
            self._processing = False
            self._idle.set()

    async def _handle(self, document_id: str) -> str:
        attempts = await self._queue.get_attempts(document_id)
        logger.info("Processing document", extra={"document_id": document_id, "attempts": attempts})

        started = time.perf_counter()
        try:
            result = await self._pipeline.process(document_id)
        except StoreUnavailable:
            raise
        except Exception as exc:
            logger.exception("Pipeline raised unexpectedly", extra={"document_id": document_id})
            result = PipelineResult(document_id=document_id, success=False, error=str(exc) or type(exc).__name__)

        if result.success:
            await self._queue.mark_complete(document_id)
            observe_job(OUTCOME_COMPLETED, time.perf_counter() - started)
            logger.info(
                "Document processed successfully",
                extra={
                    "document_id": document_id,
                    "ai_score": result.score,
                    "verification_status": result.verification_status,
                    "ticket_id": result.ticket_id,
                },
            )
            return OUTCOME_COMPLETED

        outcome = await self._handle_failure(document_id, result.error or "Unknown error")
        observe_job(outcome, time.perf_counter() - started)
        return outcome

    async def _handle_failure(self, document_id: str, error: str) -> str:
        attempts = await self._queue.increment_attempts(document_id)

        if attempts < self._settings.max_retries:
            delay_ms = compute_backoff_delay(attempts, base_delay_ms=self._settings.base_delay_ms)
            await self._queue.requeue(document_id, delay_ms)
            logger.warning(
                "Document processing failed, scheduling retry",
                extra={
                    "document_id": document_id,
                    "attempts": attempts,
                    "max_retries": self._settings.max_retries,
                    "delay_ms": delay_ms,
                    "error": error,
                },
            )
            return OUTCOME_RETRIED

        await self._queue.mark_failed(document_id)
        failure = PermanentFailure(document_id, attempts, error)
        logger.error(str(failure), extra={"document_id": document_id, "attempts": attempts})
        try:
            await self._documents.mark_failed(document_id, error)
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to mark document as failed",
                extra={"document_id": document_id, "error": str(exc)},
            )
        try:
            await self._escalation.escalate_failure(document_id, error)
        except (EscalationError, SQLAlchemyError) as exc:
            logger.error(
                "Failed to escalate permanently failed document",
                extra={"document_id": document_id, "error": str(exc)},
            )
        return OUTCOME_FAILED
