"""HTTP 服务入口：挂载 /api/v1 路由，统一请求日志、请求 ID 与校验错误信封。"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from paperchat.api.router import api_router
from paperchat.api.v1.responses import bad_request
from paperchat.application.container import shutdown_container_resources
from paperchat.config import get_settings
from paperchat.infra.db.session import init_db
from paperchat.infra.logging.context import bind_log_context
from paperchat.infra.logging.setup import configure_logging, shutdown_logging

REQUEST_ID_HEADER = "X-Request-Id"
SESSION_ID_HEADER = "X-Session-Id"

settings = get_settings()
configure_logging(settings, process_role="api")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    init_db()
    logger.info(
        "paperchat api ready",
        extra={"event": "api.startup.succeeded", "payload_preview": {"llm_configured": settings.llm_configured()}},
    )
    if not settings.llm_configured():
        logger.warning("azure openai is not configured, chat replies will degrade", extra={"event": "api.startup.degraded"})
    try:
        yield
    finally:
        logger.info("paperchat api stopping", extra={"event": "api.shutdown.started"})
        await shutdown_container_resources()
        shutdown_logging()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

if settings.cors_allowed_origins_list():
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins_list(),
        allow_methods=settings.cors_allowed_methods_list(),
        allow_headers=settings.cors_allowed_headers_list(),
        allow_credentials=settings.cors_allow_credentials,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError):
    """只报告第一处错误，格式为 "字段路径: 原因"。"""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    reason = first.get("msg", "invalid request")
    return bad_request(f"{location}: {reason}" if location else reason)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """绑定请求 ID 与会话 ID（若客户端带了 X-Session-Id），并记录每个请求的耗时。"""
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
    op = f"{request.method} {request.url.path}"
    started = time.perf_counter()
    with bind_log_context(request_id=request_id, session_id=request.headers.get(SESSION_ID_HEADER)):
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(
                "http request failed",
                extra={
                    "event": "http.request.failed",
                    "op": op,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(exc).__name__,
                },
            )
            raise
        logger.info(
            "http request completed",
            extra={
                "event": "http.request.completed",
                "op": op,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": response.status_code,
            },
        )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(api_router)
