"""Single-document processing: download, OCR, parse, score, persist, escalate."""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from apps.kyc_worker.database import DocumentRepository
from apps.kyc_worker.decision import determine_verification_path
from apps.kyc_worker.errors import EscalationError, PipelineFailure, StorageError
from apps.kyc_worker.escalation import EscalationService
from apps.kyc_worker.models import Document, ProcessingStatus
from apps.kyc_worker.ocr import TesseractOCR, parse_document
from apps.kyc_worker.storage import DocumentStorage, extract_key_from_url
from apps.kyc_worker.telemetry import get_tracer

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    document_id: str
    success: bool
    score: Optional[int] = None
    decision: Optional[str] = None
    verification_status: Optional[str] = None
    ticket_id: Optional[str] = None
    error: Optional[str] = None


def _storage_key(document: Document) -> str:
    if document.r2_key:
        return document.r2_key
    if document.file_url:
        return extract_key_from_url(document.file_url)
    raise StorageError(f"Document {document.id} has no stored file")


class DocumentPipeline:
    """Runs one document through OCR and the scoring state machine.

    Failures are reported in the returned ``PipelineResult`` rather than raised,
    so the worker loop decides between retry and permanent failure.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        storage: DocumentStorage,
        ocr: TesseractOCR,
        escalation: EscalationService,
    ) -> None:
        self._documents = documents
        self._storage = storage
        self._ocr = ocr
        self._escalation = escalation

    async def process(self, document_id: str) -> PipelineResult:
        with get_tracer().start_as_current_span("kyc.process_document") as span:
            span.set_attribute("document.id", document_id)
            try:
                result = await self._run(document_id)
            except (PipelineFailure, EscalationError, SQLAlchemyError) as exc:
                logger.error(
                    "Document processing failed",
                    extra={"document_id": document_id, "error": str(exc), "error_type": type(exc).__name__},
                )
                span.record_exception(exc)
                return PipelineResult(document_id=document_id, success=False, error=str(exc))
            span.set_attribute("document.success", result.success)
            if result.score is not None:
                span.set_attribute("document.ai_score", result.score)
            return result

    async def _run(self, document_id: str) -> PipelineResult:
        document = await self._documents.get(document_id)
        if document is None:
            logger.error("Document not found", extra={"document_id": document_id})
            return PipelineResult(document_id=document_id, success=False, error="Document not found")

        await self._documents.mark_processing(document_id)

        key = _storage_key(document)
        blob = await asyncio.to_thread(self._storage.download, key)
        suffix = os.path.splitext(key)[1]
        ocr_text = await asyncio.to_thread(self._ocr.extract_text, blob, suffix=suffix)

        parsed = parse_document(document.type, ocr_text)
        path = determine_verification_path(document.type, parsed)
        logger.info(
            "Document scored",
            extra={
                "document_id": document_id,
                "document_type": document.type,
                "ai_score": path.score,
                "ai_decision": path.decision.value,
                "fields": sorted(parsed),
            },
        )

        await self._documents.update(
            document_id,
            status=ProcessingStatus.COMPLETED,
            result_json=parsed,
            ocr_text=ocr_text,
            ai_score=path.score,
            ai_decision=path.decision.value,
            verification_status=path.outcome.value,
            processed_at=datetime.now(timezone.utc),
        )

        ticket_id = None
        if path.needs_review:
            escalated = await self._escalation.escalate(document, parsed, path.score, ocr_text=ocr_text)
            ticket_id = escalated.ticket_id

        return PipelineResult(
            document_id=document_id,
            success=True,
            score=path.score,
            decision=path.decision.value,
            verification_status=path.outcome.value,
            ticket_id=ticket_id,
        )
