"""Redis-backed durable queue for document verification jobs.

A document id moves between four Redis structures under a shared prefix:

* ``<prefix>:queue``       list of ids waiting to be processed (FIFO)
* ``<prefix>:processing``  set of ids claimed by a worker
* ``<prefix>:delayed``     sorted set of ids waiting out a backoff, scored by ready time (ms)
* ``<prefix>:attempts``    hash of failed attempt counts per id

Every state transition is a single MULTI/EXEC block; transitions that depend on
a read (dequeue, delayed promotion, recovery) WATCH the keys they read so that
concurrent workers never claim or promote the same id twice.
"""
from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis
import redis.asyncio as aioredis

from apps.kyc_worker.errors import StoreUnavailable
from apps.kyc_worker.metrics import update_queue_depth

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PREFIX = "filot:ocr"


def compute_backoff_delay(attempts: int, *, base_delay_ms: int = 3000) -> int:
    """Return the retry delay for the given failed attempt count.

    Delays grow geometrically: ``base``, ``3 * base``, ``9 * base`` ...
    """

    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    return base_delay_ms * 3 ** (attempts - 1)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class QueueKeys:
    """Encapsulates the Redis key names for one queue prefix."""

    queue: str
    processing: str
    delayed: str
    attempts: str

    @classmethod
    def for_prefix(cls, prefix: str = DEFAULT_PREFIX) -> "QueueKeys":
        return cls(
            queue=f"{prefix}:queue",
            processing=f"{prefix}:processing",
            delayed=f"{prefix}:delayed",
            attempts=f"{prefix}:attempts",
        )


@dataclass(frozen=True)
class QueueStats:
    queue_length: int
    processing_count: int
    delayed_count: int

    def to_dict(self) -> dict[str, int]:
        return {
            "queueLength": self.queue_length,
            "processingCount": self.processing_count,
            "delayedCount": self.delayed_count,
        }


def _store_guard(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Translate Redis client errors into StoreUnavailable."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except redis.RedisError as exc:
            logger.error("Queue store operation failed", extra={"operation": func.__name__, "error": str(exc)})
            raise StoreUnavailable(f"{func.__name__}: {exc}") from exc

    return wrapper


class DurableQueue:
    """Queue primitives over an asyncio Redis client."""

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        prefix: str = DEFAULT_PREFIX,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._client = client
        self._clock = clock
        self.keys = QueueKeys.for_prefix(prefix)

    @property
    def client(self) -> aioredis.Redis:
        return self._client

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError as exc:
            logger.warning("Queue store ping failed", extra={"error": str(exc)})
            return False

    @_store_guard
    async def enqueue(self, document_id: str) -> bool:
        """Append a document to the queue tail.

        Returns False without enqueuing when the id is already queued,
        processing or waiting out a backoff.
        """

        keys = self.keys

        async def _push(pipe) -> bool:
            in_queue = await pipe.lpos(keys.queue, document_id)
            in_processing = await pipe.sismember(keys.processing, document_id)
            in_delayed = await pipe.zscore(keys.delayed, document_id)
            if in_queue is not None or in_processing or in_delayed is not None:
                return False
            pipe.multi()
            pipe.rpush(keys.queue, document_id)
            return True

        added = await self._client.transaction(
            _push, keys.queue, keys.processing, keys.delayed, value_from_callable=True
        )
        if added:
            logger.info("Document enqueued for processing", extra={"document_id": document_id})
        else:
            logger.info("Document already in queue or processing", extra={"document_id": document_id})
        return added

    @_store_guard
    async def dequeue(self) -> Optional[str]:
        """Move the queue head into the processing set and return it."""

        keys = self.keys

        async def _claim(pipe) -> Optional[str]:
            head = await pipe.lindex(keys.queue, 0)
            if head is None:
                return None
            pipe.multi()
            pipe.lpop(keys.queue)
            pipe.sadd(keys.processing, head)
            return head

        document_id = await self._client.transaction(_claim, keys.queue, value_from_callable=True)
        if document_id:
            logger.info("Document dequeued for processing", extra={"document_id": document_id})
        return document_id

    @_store_guard
    async def requeue(self, document_id: str, delay_ms: int = 0) -> None:
        """Release a claimed document, either to the delayed set or the queue tail."""

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.srem(self.keys.processing, document_id)
            if delay_ms > 0:
                pipe.zadd(self.keys.delayed, {document_id: self._clock() + delay_ms})
            else:
                pipe.rpush(self.keys.queue, document_id)
            await pipe.execute()

        if delay_ms > 0:
            logger.info("Document requeued with delay", extra={"document_id": document_id, "delay_ms": delay_ms})
        else:
            logger.info("Document requeued immediately", extra={"document_id": document_id})

    async def _clear(self, document_id: str) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.srem(self.keys.processing, document_id)
            pipe.hdel(self.keys.attempts, document_id)
            pipe.zrem(self.keys.delayed, document_id)
            await pipe.execute()

    @_store_guard
    async def mark_complete(self, document_id: str) -> None:
        await self._clear(document_id)
        logger.info("Document marked as complete in queue", extra={"document_id": document_id})

    @_store_guard
    async def mark_failed(self, document_id: str) -> None:
        await self._clear(document_id)
        logger.info("Document marked as failed in queue", extra={"document_id": document_id})

    @_store_guard
    async def get_attempts(self, document_id: str) -> int:
        raw = await self._client.hget(self.keys.attempts, document_id)
        return int(raw) if raw else 0

    @_store_guard
    async def increment_attempts(self, document_id: str) -> int:
        attempts = int(await self._client.hincrby(self.keys.attempts, document_id, 1))
        logger.info("Incremented attempt count", extra={"document_id": document_id, "attempts": attempts})
        return attempts

    @_store_guard
    async def process_delayed_queue(self) -> int:
        """Promote every delayed entry whose ready time has passed."""

        keys = self.keys
        now = self._clock()

        async def _promote(pipe) -> list[str]:
            ready = await pipe.zrangebyscore(keys.delayed, "-inf", now)
            if not ready:
                return []
            pipe.multi()
            pipe.zrem(keys.delayed, *ready)
            pipe.rpush(keys.queue, *ready)
            return list(ready)

        promoted = await self._client.transaction(_promote, keys.delayed, value_from_callable=True)
        if promoted:
            logger.info("Moved delayed documents to queue", extra={"count": len(promoted)})
        return len(promoted)

    @_store_guard
    async def processing_members(self) -> list[str]:
        return sorted(await self._client.smembers(self.keys.processing))

    @_store_guard
    async def recover_processing(self, *, reset_attempts: bool = False) -> list[str]:
        """Move every processing-set member back to the queue tail."""

        keys = self.keys

        async def _move(pipe) -> list[str]:
            members = sorted(await pipe.smembers(keys.processing))
            if not members:
                return []
            pipe.multi()
            pipe.srem(keys.processing, *members)
            pipe.rpush(keys.queue, *members)
            if reset_attempts:
                pipe.hdel(keys.attempts, *members)
            return members

        return await self._client.transaction(_move, keys.processing, value_from_callable=True)

    @_store_guard
    async def get_queue_stats(self) -> QueueStats:
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.llen(self.keys.queue)
            pipe.scard(self.keys.processing)
            pipe.zcard(self.keys.delayed)
            queue_length, processing_count, delayed_count = await pipe.execute()
        stats = QueueStats(
            queue_length=int(queue_length),
            processing_count=int(processing_count),
            delayed_count=int(delayed_count),
        )
        update_queue_depth(stats.queue_length, stats.processing_count, stats.delayed_count)
        return stats
