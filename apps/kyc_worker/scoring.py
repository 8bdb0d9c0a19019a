"""Deterministic trust score for parsed KTP/NPWP fields."""
from __future__ import annotations

import math
import re
from typing import Any, Mapping, Optional

COMPLETENESS_WEIGHT = 60
KTP_NIK_BONUS = 20
KTP_NAME_BONUS = 10
NPWP_NUMBER_BONUS = 30

NIK_PATTERN = re.compile(r"[0-9]{16}")
NPWP_PATTERN = re.compile(r"[0-9]{2}\.[0-9]{3}\.[0-9]{3}\.[0-9]-[0-9]{3}\.[0-9]{3}")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _matches(pattern: re.Pattern[str], value: Any) -> bool:
    return isinstance(value, str) and pattern.fullmatch(value) is not None


def compute_ai_score(document_type: str, parsed: Optional[Mapping[str, Any]]) -> int:
    """Return a score in [0, 100] for the parsed fields of a document.

    Every key counts toward completeness, including keys whose value is empty,
    so a parser that reports a missing field lowers the score.
    """

    if not parsed:
        return 0

    filled = sum(1 for value in parsed.values() if value)
    score = filled / len(parsed) * COMPLETENESS_WEIGHT

    if document_type == "KTP":
        if _matches(NIK_PATTERN, parsed.get("nik")):
            score += KTP_NIK_BONUS
        name = parsed.get("name")
        if isinstance(name, str) and len(name) > 3:
            score += KTP_NAME_BONUS
    elif document_type == "NPWP":
        if _matches(NPWP_PATTERN, parsed.get("npwpNumber")):
            score += NPWP_NUMBER_BONUS

    return _round_half_up(min(100.0, score))
