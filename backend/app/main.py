from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.dependencies import (
    get_repositories,
    get_scheduler,
    get_settings,
    get_telemetry,
)
from backend.app.logging_config import configure_application_logging


def health_check() -> dict[str, str]:
    return {"status": "ok"}


def scheduler_status() -> dict[str, Any]:
    repositories = get_repositories()
    status = get_scheduler().status()
    status["channels"] = repositories.channels.count_channels()
    status["videos"] = repositories.videos.count_videos()
    return status


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    scheduler = get_scheduler() if settings.scheduler_enabled else None
    if scheduler is not None:
        scheduler.start()

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


def create_app() -> FastAPI:
    app = FastAPI(title="subfeed", version="0.1.0", lifespan=app_lifespan)

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        request_id = request.headers.get("X-Request-ID", "").strip() or str(uuid4())
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.http_request_failed(
                method=request.method,
                path=request.url.path,
                error=exc,
                started_at=started_at,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.http_request_finished(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                started_at=started_at,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    app.add_api_route(
        "/status",
        scheduler_status,
        methods=["GET"],
        tags=["system"],
        operation_id="scheduler_status",
    )
    return app


app = create_app()
