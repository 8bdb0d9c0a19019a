"""FastAPI application exposing worker health, queue depth and metrics."""
from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from apps.kyc_worker.config import WorkerConfig, get_worker_settings
from apps.kyc_worker.errors import StoreUnavailable
from apps.kyc_worker.queues import DurableQueue
from apps.kyc_worker.worker import WorkerController

basic_auth = HTTPBasic(auto_error=False)


def get_queue(request: Request) -> DurableQueue:
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Queue store not configured")
    return queue


def get_settings(request: Request) -> WorkerConfig:
    return request.app.state.settings


def require_metrics_auth(
    credentials: Optional[HTTPBasicCredentials] = Depends(basic_auth),
    settings: WorkerConfig = Depends(get_settings),
) -> None:
    """Enforce basic auth when ``metrics_auth`` (``user:pass``) is configured."""

    if not settings.metrics_auth:
        return
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Basic"},
        )
    try:
        expected_user, expected_pass = settings.metrics_auth.split(":", 1)
    except ValueError as exc:  # pragma: no cover - misconfiguration guard
        raise HTTPException(status_code=500, detail="Metrics authentication misconfigured") from exc
    user_ok = secrets.compare_digest(credentials.username, expected_user)
    pass_ok = secrets.compare_digest(credentials.password, expected_pass)
    if not (user_ok and pass_ok):
        raise HTTPException(
            status_code=401,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )


def create_app(
    *,
    queue: Optional[DurableQueue] = None,
    controller: Optional[WorkerController] = None,
    settings: Optional[WorkerConfig] = None,
) -> FastAPI:
    app = FastAPI(title="KYC Verification Worker Monitor", version="0.1.0")
    app.state.queue = queue
    app.state.controller = controller
    app.state.settings = settings or get_worker_settings()

    @app.get("/health")
    async def health(request: Request, queue: DurableQueue = Depends(get_queue)) -> JSONResponse:
        store_ok = await queue.ping()
        controller = request.app.state.controller
        body = {
            "status": "ok" if store_ok else "degraded",
            "redis": store_ok,
            "worker": controller.status().to_dict() if controller is not None else None,
        }
        return JSONResponse(body, status_code=200 if store_ok else 503)

    @app.get("/ops/queue")
    async def queue_stats(queue: DurableQueue = Depends(get_queue)) -> dict:
        try:
            stats = await queue.get_queue_stats()
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail="Queue store unavailable") from exc
        return stats.to_dict()

    @app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
