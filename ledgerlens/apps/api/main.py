from __future__ import annotations

from contextlib import asynccontextmanager
import time
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ledgerlens.apps.api.errors import (
    http_exception_handler,
    ledgerlens_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from ledgerlens.apps.api.response import API_VERSION, REQUEST_ID_HEADER, get_request_id
from ledgerlens.apps.api.routes.chat import router as chat_router
from ledgerlens.apps.api.routes.health import router as health_router
from ledgerlens.apps.api.routes.metrics import router as metrics_router
from ledgerlens.core import background
from ledgerlens.core.errors import LedgerLensError
from ledgerlens.core.logging import configure_logging
from ledgerlens.persistence.guards import TenantPredicateError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let pending message and cache writes finish before the loop closes.
    await background.drain()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="LedgerLens API", lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = get_request_id(request)
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed path=%s status=%s latency_ms=%.1f request_id=%s",
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(LedgerLensError)
    async def _ledgerlens_exception_handler(request: Request, exc: LedgerLensError):
        return await ledgerlens_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(chat_router, prefix=f"/{API_VERSION}")
    app.include_router(metrics_router, prefix=f"/{API_VERSION}")

    return app


app = create_app()
