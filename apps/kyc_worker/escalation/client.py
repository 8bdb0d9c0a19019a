"""HTTP client for the external manual review service."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from apps.kyc_worker.errors import (
    EscalationRejected,
    EscalationTimeout,
    EscalationTransportError,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReviewRequest:
    """Payload submitted to ``POST /internal/reviews``."""

    document_id: str
    document_type: str
    parsed_data: Dict[str, Any]
    ai_score: int
    user_id: Optional[str] = None
    ocr_text: Optional[str] = None
    correlation_id: Optional[str] = None
    callback_url: Optional[str] = None
    original_filename: Optional[str] = None
    r2_key: Optional[str] = None
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "documentId": self.document_id,
            "documentType": self.document_type,
            "parsedData": self.parsed_data,
            "aiScore": self.ai_score,
            "metadata": {"submittedAt": self.submitted_at.isoformat()},
        }
        optional = {
            "userId": self.user_id,
            "ocrText": self.ocr_text,
            "correlationId": self.correlation_id,
            "callbackUrl": self.callback_url,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        if self.original_filename is not None:
            payload["metadata"]["originalFilename"] = self.original_filename
        if self.r2_key is not None:
            payload["metadata"]["r2Key"] = self.r2_key
        return payload


@dataclass(frozen=True)
class ReviewTicket:
    ticket_id: str
    status: str
    message: Optional[str] = None


@dataclass(frozen=True)
class ReviewStatus:
    status: str
    decision: Optional[str] = None
    notes: Optional[str] = None


class ReviewClient:
    """Thin requests wrapper; every failure surfaces as an EscalationError subclass."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_ms: int = 30000,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_ms / 1000
        self._session = session or requests.Session()

    def _headers(self, correlation_id: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        document_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> requests.Response:
        url = f"{self._base_url}{path}"
        start = time.time()
        try:
            response = self._session.request(
                method,
                url,
                json=json_body,
                headers=self._headers(correlation_id),
                timeout=self._timeout,
            )
        except requests.Timeout as exc:
            raise EscalationTimeout(
                f"Review service timed out after {self._timeout:.0f}s",
                document_id=document_id,
                correlation_id=correlation_id,
            ) from exc
        except requests.RequestException as exc:
            raise EscalationTransportError(
                f"Review service unreachable: {exc}",
                document_id=document_id,
                correlation_id=correlation_id,
            ) from exc

        logger.info(
            "Review service request completed",
            extra={
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "document_id": document_id,
                "correlation_id": correlation_id,
                "response_time_ms": round((time.time() - start) * 1000),
            },
        )
        if not 200 <= response.status_code < 300:
            raise EscalationRejected(
                f"Review service returned {response.status_code}",
                status_code=response.status_code,
                body=response.text,
                document_id=document_id,
                correlation_id=correlation_id,
            )
        return response

    def submit_review(self, review: ReviewRequest) -> ReviewTicket:
        response = self._request(
            "POST",
            "/internal/reviews",
            json_body=review.to_dict(),
            document_id=review.document_id,
            correlation_id=review.correlation_id,
        )
        data = _json_or_empty(response)
        ticket_id = data.get("taskId") or data.get("ticketId") or f"ESC-{int(time.time() * 1000)}"
        return ReviewTicket(
            ticket_id=str(ticket_id),
            status=str(data.get("status") or "queued"),
            message=data.get("message"),
        )

    def get_review_status(self, ticket_id: str, *, correlation_id: Optional[str] = None) -> ReviewStatus:
        response = self._request("GET", f"/internal/reviews/{ticket_id}/status", correlation_id=correlation_id)
        data = _json_or_empty(response)
        return ReviewStatus(
            status=str(data.get("status") or "unknown"),
            decision=data.get("decision"),
            notes=data.get("notes"),
        )

    def cancel_review(
        self,
        ticket_id: str,
        *,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> bool:
        body = {"reason": reason} if reason else {}
        self._request(
            "POST",
            f"/internal/reviews/{ticket_id}/cancel",
            json_body=body,
            correlation_id=correlation_id,
        )
        return True


def _json_or_empty(response: requests.Response) -> Dict[str, Any]:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
