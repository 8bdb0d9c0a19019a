import logging

from apps.kyc_worker.config import WorkerConfig, get_worker_settings, reset_worker_settings_cache
from apps.kyc_worker.infra.redis import get_redis_connection, reset_worker_redis_cache
from apps.kyc_worker.logging_config import SkippedTickFilter, configure_logging
from apps.kyc_worker.runtime import build_escalation


def test_defaults_match_worker_contract(monkeypatch):
    for name in ("QUEUE_PREFIX", "POLL_INTERVAL_MS", "MAX_RETRIES", "BASE_DELAY_MS"):
        monkeypatch.delenv(name, raising=False)
    reset_worker_settings_cache()
    try:
        settings = get_worker_settings()
        assert settings.queue_prefix == "filot:ocr"
        assert settings.poll_interval_ms == 3000
        assert settings.delayed_poll_interval_ms == 1000
        assert settings.max_retries == 3
        assert settings.base_delay_ms == 3000
        assert settings.escalation_timeout_ms == 30000
    finally:
        reset_worker_settings_cache()


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("QUEUE_PREFIX", "staging:ocr")
    monkeypatch.setenv("MAX_RETRIES", "5")
    reset_worker_settings_cache()
    try:
        settings = get_worker_settings()
        assert settings.queue_prefix == "staging:ocr"
        assert settings.max_retries == 5
        assert get_worker_settings() is settings
    finally:
        reset_worker_settings_cache()


def test_redis_connection_uses_cached_pool(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://cache.internal:6380/2")
    reset_worker_settings_cache()
    reset_worker_redis_cache()
    try:
        first = get_redis_connection()
        second = get_redis_connection()
        assert first.connection_pool is second.connection_pool
        kwargs = first.connection_pool.connection_kwargs
        assert kwargs["host"] == "cache.internal"
        assert kwargs["port"] == 6380
        assert kwargs["db"] == 2
        assert kwargs["decode_responses"] is True
    finally:
        reset_worker_redis_cache()
        reset_worker_settings_cache()


def test_build_escalation_wires_callback(documents, worker_settings):
    worker_settings.escalation_callback_url = "http://app.local/reviews/callback"

    service = build_escalation(worker_settings, documents)

    assert service._callback_url == "http://app.local/reviews/callback"


def _record(message):
    return logging.LogRecord("apscheduler.scheduler", logging.WARNING, __file__, 1, message, (), None)


def test_configure_logging_drops_skipped_tick_warnings():
    scheduler_logger = logging.getLogger("apscheduler.scheduler")
    try:
        configure_logging(WorkerConfig(_env_file=None))
        configure_logging(WorkerConfig(_env_file=None))

        filters = [f for f in scheduler_logger.filters if isinstance(f, SkippedTickFilter)]
        assert len(filters) == 1
        skipped = _record(
            'Execution of job "kyc_worker_poll" skipped: maximum number of running instances reached (1)'
        )
        assert filters[0].filter(skipped) is False
        assert filters[0].filter(_record("Scheduler started")) is True
    finally:
        for f in list(scheduler_logger.filters):
            if isinstance(f, SkippedTickFilter):
                scheduler_logger.removeFilter(f)
