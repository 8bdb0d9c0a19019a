"""Wiring of the worker components and the long-running process entrypoint."""
from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
import uvicorn
from sqlalchemy.ext.asyncio import AsyncEngine

from apps.kyc_worker.config import WorkerConfig, get_worker_settings
from apps.kyc_worker.database import DocumentRepository, create_engine, create_session_factory
from apps.kyc_worker.escalation import EscalationService, ReviewClient
from apps.kyc_worker.infra.redis import close_redis_connection, get_redis_connection
from apps.kyc_worker.logging_config import configure_logging
from apps.kyc_worker.ocr import TesseractOCR
from apps.kyc_worker.pipeline import DocumentPipeline
from apps.kyc_worker.queues import DurableQueue
from apps.kyc_worker.server import create_app
from apps.kyc_worker.storage import DocumentStorage
from apps.kyc_worker.telemetry import setup_telemetry
from apps.kyc_worker.worker import WorkerController

logger = logging.getLogger(__name__)


@dataclass
class WorkerRuntime:
    settings: WorkerConfig
    redis: aioredis.Redis
    engine: AsyncEngine
    queue: DurableQueue
    documents: DocumentRepository
    escalation: EscalationService

    async def aclose(self) -> None:
        await close_redis_connection(self.redis)
        await self.engine.dispose()


def build_escalation(settings: WorkerConfig, documents: DocumentRepository) -> EscalationService:
    client = ReviewClient(
        base_url=settings.escalation_api_url,
        api_key=settings.escalation_api_key,
        timeout_ms=settings.escalation_timeout_ms,
    )
    return EscalationService(client, documents, callback_url=settings.escalation_callback_url)


def build_runtime(settings: Optional[WorkerConfig] = None) -> WorkerRuntime:
    """Create the store clients shared by the worker and the CLI commands."""

    settings = settings or get_worker_settings()
    client = get_redis_connection()
    engine = create_engine(settings.database_url)
    documents = DocumentRepository(create_session_factory(engine))
    return WorkerRuntime(
        settings=settings,
        redis=client,
        engine=engine,
        queue=DurableQueue(client, prefix=settings.queue_prefix),
        documents=documents,
        escalation=build_escalation(settings, documents),
    )


def build_controller(runtime: WorkerRuntime) -> WorkerController:
    settings = runtime.settings
    pipeline = DocumentPipeline(
        runtime.documents,
        DocumentStorage(settings),
        TesseractOCR(lang=settings.ocr_lang, config=settings.ocr_config),
        runtime.escalation,
    )
    return WorkerController(
        runtime.queue,
        pipeline,
        runtime.documents,
        runtime.escalation,
        settings=settings,
    )


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still ends the process
            logger.debug("Signal handlers not supported on this platform")


async def run_worker(settings: Optional[WorkerConfig] = None, *, serve_ops: bool = True) -> None:
    """Run the worker until SIGINT/SIGTERM, then shut down gracefully."""

    settings = settings or get_worker_settings()
    configure_logging(settings)
    setup_telemetry()

    runtime = build_runtime(settings)
    controller = build_controller(runtime)

    ops_server: Optional[uvicorn.Server] = None
    ops_task: Optional[asyncio.Task] = None
    if serve_ops:
        app = create_app(queue=runtime.queue, controller=controller, settings=settings)
        ops_server = uvicorn.Server(
            uvicorn.Config(app, host="0.0.0.0", port=settings.ops_port, log_config=None, access_log=False)
        )
        ops_task = asyncio.create_task(ops_server.serve())

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    await controller.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutdown requested")
        drained = await controller.stop(settings.shutdown_timeout_seconds)
        if not drained:
            logger.warning("Exiting with a document still in the processing set")
        if ops_server is not None and ops_task is not None:
            ops_server.should_exit = True
            await ops_task
        await runtime.aclose()
