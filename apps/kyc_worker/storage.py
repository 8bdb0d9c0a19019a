"""
S3-compatible (Cloudflare R2) access to uploaded identity documents, guarded by a circuit breaker.
"""
import logging
import time
from typing import Callable, Optional
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from apps.kyc_worker.config import WorkerConfig
from apps.kyc_worker.errors import StorageError

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Circuit breaker with half-open recovery."""

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        recovery_time: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be positive")
        self._failure_threshold = failure_threshold
        self._recovery_time = max(0.0, recovery_time)
        self._clock = clock
        self._state = "closed"
        self._failure_count = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        return self._state

    def allow(self) -> None:
        """Ensure the circuit allows a new call."""

        if self._state != "open":
            return
        if self._opened_at is not None and self._clock() - self._opened_at < self._recovery_time:
            raise StorageError("Storage circuit is open")
        logger.debug("Storage circuit breaker moving to half-open state")
        self._state = "half_open"

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = "closed"
        self._opened_at = None

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._failure_count >= self._failure_threshold:
            if self._state != "open":
                logger.warning("Storage circuit breaker opened after %s failures", self._failure_count)
            self._state = "open"
            self._opened_at = self._clock()


def extract_key_from_url(file_url: str) -> str:
    """Return the object key from a stored file URL or a bare key."""

    parsed = urlparse(file_url)
    if not parsed.scheme:
        return file_url.lstrip("/")
    return parsed.path.lstrip("/")


class DocumentStorage:
    """Downloads uploaded files from the document bucket."""

    def __init__(self, settings: WorkerConfig, *, client=None, breaker: Optional[CircuitBreaker] = None) -> None:
        self.bucket = settings.r2_bucket
        self._breaker = breaker or CircuitBreaker()
        if client is None:
            config = Config(
                retries={"max_attempts": 3, "mode": "standard"},
                connect_timeout=10,
                read_timeout=60,
                region_name=settings.r2_region,
            )
            client = boto3.client(
                "s3",
                endpoint_url=settings.r2_endpoint,
                aws_access_key_id=settings.r2_access_key_id,
                aws_secret_access_key=settings.r2_secret_access_key,
                config=config,
            )
        self.client = client

    def download(self, key: str) -> bytes:
        """Download an object, raising StorageError on any failure."""

        if not key or not key.strip():
            raise StorageError("Storage key cannot be empty")

        self._breaker.allow()
        start_time = time.time()
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key.strip())
            body = response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            self._breaker.record_failure()
            logger.error(
                "Storage download failed",
                extra={"key": key, "elapsed": round(time.time() - start_time, 3), "error": str(exc)},
            )
            raise StorageError(f"Failed to download {key}: {exc}") from exc

        self._breaker.record_success()
        logger.debug("Downloaded %s (%d bytes) in %.3fs", key, len(body), time.time() - start_time)
        return body
