from typing import Any, Dict, List, Optional

import pytest
from fakeredis import FakeAsyncRedis

from apps.kyc_worker.config import WorkerConfig
from apps.kyc_worker.database import DocumentRepository, create_engine, create_session_factory
from apps.kyc_worker.escalation.client import ReviewRequest, ReviewStatus, ReviewTicket
from apps.kyc_worker.models import Base, Document
from apps.kyc_worker.queues import DurableQueue


class FakeClock:
    def __init__(self, now_ms: int = 1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class RecordingReviewClient:
    """In-memory stand-in for the review service client."""

    def __init__(self, *, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.submitted: List[ReviewRequest] = []
        self.cancelled: List[Dict[str, Any]] = []

    def submit_review(self, review: ReviewRequest) -> ReviewTicket:
        if self.fail_with is not None:
            raise self.fail_with
        self.submitted.append(review)
        return ReviewTicket(ticket_id=f"TICKET-{len(self.submitted)}", status="queued")

    def get_review_status(self, ticket_id: str, *, correlation_id=None) -> ReviewStatus:
        return ReviewStatus(status="in_review", decision=None, notes=f"checking {ticket_id}")

    def cancel_review(self, ticket_id: str, *, reason=None, correlation_id=None) -> bool:
        self.cancelled.append({"ticket_id": ticket_id, "reason": reason})
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def redis_client():
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def queue(redis_client, clock):
    return DurableQueue(redis_client, prefix="test:ocr", clock=clock)


@pytest.fixture
def worker_settings():
    return WorkerConfig(
        _env_file=None,
        queue_prefix="test:ocr",
        poll_interval_ms=60_000,
        delayed_poll_interval_ms=60_000,
        max_retries=3,
        base_delay_ms=3000,
        shutdown_timeout_seconds=0.5,
        metrics_auth=None,
    )


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'kyc.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def documents(session_factory):
    return DocumentRepository(session_factory)


@pytest.fixture
def add_document(session_factory):
    async def _add(document_id: str, document_type: str = "KTP", **fields: Any) -> Document:
        fields.setdefault("user_id", "user-1")
        fields.setdefault("r2_key", f"uploads/{document_id}.png")
        fields.setdefault("original_filename", f"{document_id}.png")
        document = Document(id=document_id, type=document_type, **fields)
        async with session_factory() as session:
            session.add(document)
            await session.commit()
        return document

    return _add


@pytest.fixture
def review_client():
    return RecordingReviewClient()
