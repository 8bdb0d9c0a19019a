"""Async access to the document records the worker reads and updates."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from apps.kyc_worker.models import Document, ProcessingStatus

log = logging.getLogger(__name__)


def create_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=False, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class DocumentRepository:
    """Read-by-id and partial update-by-id over the documents table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, document_id: str) -> Optional[Document]:
        async with self._session_factory() as session:
            result = await session.execute(select(Document).where(Document.id == document_id))
            return result.scalar_one_or_none()

    async def update(self, document_id: str, **fields: Any) -> None:
        if not fields:
            return
        async with self._session_factory() as session:
            await session.execute(update(Document).where(Document.id == document_id).values(**fields))
            await session.commit()

    async def mark_processing(self, document_id: str) -> None:
        await self.update(document_id, status=ProcessingStatus.PROCESSING)

    async def mark_failed(self, document_id: str, error: str) -> None:
        await self.update(
            document_id,
            status=ProcessingStatus.FAILED,
            result_json={
                "error": error,
                "failedAt": datetime.now(timezone.utc).isoformat(),
                "maxRetriesExceeded": True,
            },
        )
        log.info("Document marked as failed", extra={"document_id": document_id, "error": error})
