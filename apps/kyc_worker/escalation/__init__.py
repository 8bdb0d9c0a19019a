"""Manual review escalation."""
from __future__ import annotations

from .client import ReviewClient, ReviewRequest, ReviewStatus, ReviewTicket
from .service import EscalationResult, EscalationService

__all__ = [
    "EscalationResult",
    "EscalationService",
    "ReviewClient",
    "ReviewRequest",
    "ReviewStatus",
    "ReviewTicket",
]
