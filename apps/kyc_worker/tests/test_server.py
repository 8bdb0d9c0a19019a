import base64

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CONTENT_TYPE_LATEST

from apps.kyc_worker.errors import StoreUnavailable
from apps.kyc_worker.queues import QueueStats
from apps.kyc_worker.server import create_app


class StubQueue:
    def __init__(self, *, healthy=True, stats=None):
        self.healthy = healthy
        self.stats = stats or QueueStats(queue_length=2, processing_count=1, delayed_count=3)

    async def ping(self):
        return self.healthy

    async def get_queue_stats(self):
        if not self.healthy:
            raise StoreUnavailable("get_queue_stats: connection refused")
        return self.stats


def _client(worker_settings, **kwargs):
    return TestClient(create_app(settings=worker_settings, **kwargs))


def test_health_reports_store_state(worker_settings):
    client = _client(worker_settings, queue=StubQueue())

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "redis": True, "worker": None}


def test_health_is_degraded_when_store_is_down(worker_settings):
    client = _client(worker_settings, queue=StubQueue(healthy=False))

    response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"


def test_queue_stats_endpoint(worker_settings):
    client = _client(worker_settings, queue=StubQueue())

    response = client.get("/ops/queue")

    assert response.status_code == 200
    assert response.json() == {"queueLength": 2, "processingCount": 1, "delayedCount": 3}


def test_queue_stats_when_store_is_down(worker_settings):
    client = _client(worker_settings, queue=StubQueue(healthy=False))

    assert client.get("/ops/queue").status_code == 503


def test_endpoints_need_a_configured_queue(worker_settings):
    client = _client(worker_settings)

    assert client.get("/ops/queue").status_code == 503


def test_metrics_without_auth(worker_settings):
    client = _client(worker_settings, queue=StubQueue())

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"] == CONTENT_TYPE_LATEST
    assert b"kyc_worker_jobs_total" in response.content


@pytest.mark.parametrize(
    "credentials, expected_status",
    [
        (None, 401),
        ("user:wrong", 401),
        ("user:pass", 200),
    ],
)
def test_metrics_basic_auth(worker_settings, credentials, expected_status):
    worker_settings.metrics_auth = "user:pass"
    client = _client(worker_settings, queue=StubQueue())
    headers = {}
    if credentials:
        headers["Authorization"] = "Basic " + base64.b64encode(credentials.encode()).decode("ascii")

    response = client.get("/metrics", headers=headers)

    assert response.status_code == expected_status
    if expected_status == 401:
        assert response.headers["www-authenticate"] == "Basic"
