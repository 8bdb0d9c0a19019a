"""Auto-approval versus manual review routing."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from apps.kyc_worker.models import AIDecision, VerificationStatus
from apps.kyc_worker.scoring import compute_ai_score

AUTO_APPROVE_THRESHOLD = 75


@dataclass(frozen=True)
class VerificationPath:
    outcome: VerificationStatus
    score: int
    decision: AIDecision

    @property
    def needs_review(self) -> bool:
        return self.outcome is VerificationStatus.PENDING_MANUAL_REVIEW


def decide(score: int) -> VerificationPath:
    if score >= AUTO_APPROVE_THRESHOLD:
        return VerificationPath(VerificationStatus.AUTO_APPROVED, score, AIDecision.AUTO_APPROVE)
    return VerificationPath(VerificationStatus.PENDING_MANUAL_REVIEW, score, AIDecision.NEEDS_REVIEW)


def determine_verification_path(document_type: str, parsed: Optional[Mapping[str, Any]]) -> VerificationPath:
    return decide(compute_ai_score(document_type, parsed))
