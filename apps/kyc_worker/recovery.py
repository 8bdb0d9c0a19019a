"""Startup recovery and operator tooling for jobs stranded in the processing set."""
from __future__ import annotations

import logging

from apps.kyc_worker.metrics import record_recovered
from apps.kyc_worker.queues import DurableQueue

logger = logging.getLogger(__name__)


async def recover_stuck_documents(queue: DurableQueue) -> int:
    """Move documents left in the processing set by a crash back to the queue.

    Attempt counters are kept so a document that was failing before the crash
    does not get a fresh retry budget.
    """

    logger.info("Starting document recovery process")
    recovered = await queue.recover_processing(reset_attempts=False)
    if not recovered:
        logger.info("No stuck documents found during recovery")
        return 0

    for document_id in recovered:
        logger.info("Recovered document", extra={"document_id": document_id})
    record_recovered("startup", len(recovered))
    logger.info("Document recovery completed", extra={"recovered": len(recovered)})
    return len(recovered)


async def requeue_stuck_jobs(queue: DurableQueue, *, dry_run: bool = False) -> list[str]:
    """Operator reset: requeue every processing-set member and clear its attempts."""

    if dry_run:
        members = await queue.processing_members()
        logger.info("Dry run: would requeue stuck jobs", extra={"count": len(members)})
        return members

    requeued = await queue.recover_processing(reset_attempts=True)
    record_recovered("manual", len(requeued))
    logger.warning("Requeued stuck jobs with attempt counters reset", extra={"count": len(requeued)})
    return requeued
