"""Escalation of documents to manual review and bookkeeping on the document record."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from apps.kyc_worker.database import DocumentRepository
from apps.kyc_worker.errors import EscalationError
from apps.kyc_worker.escalation.client import ReviewClient, ReviewRequest, ReviewStatus
from apps.kyc_worker.metrics import record_escalation
from apps.kyc_worker.models import AIDecision, Document, VerificationStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationResult:
    ticket_id: str
    status: str
    correlation_id: str


def _correlation_id(document_id: str) -> str:
    return f"esc-{document_id}-{int(time.time() * 1000)}"


class EscalationService:
    """Submits documents to the review service and records the returned ticket."""

    def __init__(
        self,
        client: ReviewClient,
        documents: DocumentRepository,
        *,
        callback_url: Optional[str] = None,
    ) -> None:
        self._client = client
        self._documents = documents
        self._callback_url = callback_url

    async def escalate(
        self,
        document: Document,
        parsed: Mapping[str, Any],
        score: int,
        *,
        ocr_text: Optional[str] = None,
        correlation_id: Optional[str] = None,
        reason: str = "manual_review",
    ) -> EscalationResult:
        """Submit a document for manual review. Raises EscalationError without retrying."""

        correlation_id = correlation_id or _correlation_id(document.id)
        if document.ticket_id and document.verification_status == VerificationStatus.PENDING_MANUAL_REVIEW.value:
            logger.info(
                "Document already has an open review ticket",
                extra={"document_id": document.id, "ticket_id": document.ticket_id},
            )
            return EscalationResult(ticket_id=document.ticket_id, status="existing", correlation_id=correlation_id)

        logger.info(
            "Escalating document for manual review",
            extra={
                "document_id": document.id,
                "document_type": document.type,
                "ai_score": score,
                "correlation_id": correlation_id,
                "reason": reason,
            },
        )
        request = ReviewRequest(
            document_id=document.id,
            document_type=document.type,
            parsed_data=dict(parsed),
            ai_score=score,
            user_id=document.user_id,
            ocr_text=ocr_text,
            correlation_id=correlation_id,
            callback_url=self._callback_url,
            original_filename=document.original_filename,
            r2_key=document.r2_key,
        )
        try:
            ticket = await asyncio.to_thread(self._client.submit_review, request)
        except EscalationError:
            record_escalation(reason, "error")
            raise

        logger.info(
            "Review ticket created",
            extra={"document_id": document.id, "ticket_id": ticket.ticket_id, "correlation_id": correlation_id},
        )
        try:
            await self._documents.update(
                document.id,
                ticket_id=ticket.ticket_id,
                verification_status=VerificationStatus.PENDING_MANUAL_REVIEW.value,
                ai_score=score,
                ai_decision=AIDecision.NEEDS_REVIEW.value,
            )
        except SQLAlchemyError as exc:
            record_escalation(reason, "unrecorded")
            logger.error(
                "Review ticket created but not saved on the document",
                extra={"document_id": document.id, "ticket_id": ticket.ticket_id, "error": str(exc)},
            )
            raise
        record_escalation(reason, "success")
        logger.info(
            "Document escalated successfully",
            extra={
                "document_id": document.id,
                "ticket_id": ticket.ticket_id,
                "status": ticket.status,
                "correlation_id": correlation_id,
            },
        )
        return EscalationResult(ticket_id=ticket.ticket_id, status=ticket.status, correlation_id=correlation_id)

    async def escalate_failure(self, document_id: str, error: str) -> Optional[EscalationResult]:
        """Escalate a document whose processing retries are exhausted."""

        document = await self._documents.get(document_id)
        if document is None:
            logger.error("Cannot escalate missing document", extra={"document_id": document_id})
            return None
        parsed = document.result_json if isinstance(document.result_json, dict) else {}
        parsed = {key: value for key, value in parsed.items() if key not in {"error", "failedAt", "maxRetriesExceeded"}}
        return await self.escalate(
            document,
            parsed,
            document.ai_score or 0,
            ocr_text=document.ocr_text,
            reason="permanent_failure",
        )

    async def get_status(self, ticket_id: str, *, correlation_id: Optional[str] = None) -> ReviewStatus:
        return await asyncio.to_thread(self._client.get_review_status, ticket_id, correlation_id=correlation_id)

    async def cancel(
        self,
        document_id: str,
        ticket_id: str,
        *,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> bool:
        logger.info(
            "Cancelling escalation",
            extra={"document_id": document_id, "ticket_id": ticket_id, "reason": reason},
        )
        cancelled = await asyncio.to_thread(
            self._client.cancel_review, ticket_id, reason=reason, correlation_id=correlation_id
        )
        if cancelled:
            await self._documents.update(
                document_id, verification_status=VerificationStatus.ESCALATION_CANCELLED.value
            )
        return cancelled
