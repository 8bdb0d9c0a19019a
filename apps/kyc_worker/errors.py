"""Exception taxonomy for the verification worker."""
from __future__ import annotations

from typing import Optional


class StoreUnavailable(RuntimeError):
    """Raised when the Redis queue store cannot be reached."""


class PipelineFailure(RuntimeError):
    """Raised when OCR, parsing or scoring of a document fails. Retriable."""


class StorageError(PipelineFailure):
    """Raised when an uploaded file cannot be fetched from object storage."""


class OCRError(PipelineFailure):
    """Raised when text extraction fails."""


class UnsupportedDocumentType(PipelineFailure):
    """Raised for document types other than KTP and NPWP."""


class PermanentFailure(RuntimeError):
    """Raised once a document has exhausted its retries."""

    def __init__(self, document_id: str, attempts: int, reason: str) -> None:
        super().__init__(f"Document {document_id} failed after {attempts} attempts: {reason}")
        self.document_id = document_id
        self.attempts = attempts
        self.reason = reason


class EscalationError(RuntimeError):
    """Base error for calls to the manual review service."""

    def __init__(
        self,
        message: str,
        *,
        document_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.document_id = document_id
        self.correlation_id = correlation_id


class EscalationTransportError(EscalationError):
    """Raised when the review service could not be reached."""


class EscalationTimeout(EscalationError):
    """Raised when the review service did not answer in time."""


class EscalationRejected(EscalationError):
    """Raised when the review service answers with a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: str = "",
        document_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, document_id=document_id, correlation_id=correlation_id)
        self.status_code = status_code
        self.body = body
