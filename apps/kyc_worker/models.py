from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Enum, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class DocumentType(str, PyEnum):
    KTP = "KTP"
    NPWP = "NPWP"


class ProcessingStatus(str, PyEnum):
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VerificationStatus(str, PyEnum):
    PENDING = "pending"
    AUTO_APPROVED = "auto_approved"
    AUTO_REJECTED = "auto_rejected"
    PENDING_MANUAL_REVIEW = "pending_manual_review"
    MANUALLY_APPROVED = "manually_approved"
    MANUALLY_REJECTED = "manually_rejected"
    ESCALATION_CANCELLED = "escalation_cancelled"


class AIDecision(str, PyEnum):
    AUTO_APPROVE = "auto_approve"
    NEEDS_REVIEW = "needs_review"


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    file_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    r2_key: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    original_filename: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status: Mapped[ProcessingStatus] = mapped_column(
        Enum(ProcessingStatus, native_enum=False), default=ProcessingStatus.UPLOADED
    )
    verification_status: Mapped[str] = mapped_column(String(50), default=VerificationStatus.PENDING.value)
    ai_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ai_decision: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    ticket_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ocr_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
