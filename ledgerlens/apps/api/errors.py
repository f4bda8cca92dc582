from __future__ import annotations

import logging
import math
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ledgerlens.apps.api.response import error_response
from ledgerlens.core.errors import (
    LedgerLensError,
    NoTenantResolved,
    PersistenceFailed,
    ProviderConfigError,
    RateLimited,
    TenantAccessDenied,
    UpstreamOracleUnavailable,
)
from ledgerlens.persistence.guards import TenantPredicateError

logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from FastAPI HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def map_domain_error(exc: LedgerLensError) -> tuple[int, str, str]:
    # Stable client-facing codes; internal messages never leak for unexpected errors.
    if isinstance(exc, RateLimited):
        return 429, "RATE_LIMITED", "Rate limit exceeded"
    if isinstance(exc, NoTenantResolved):
        return 400, "NO_TENANT_RESOLVED", "A tenant is required for this request"
    if isinstance(exc, TenantAccessDenied):
        return 403, "TENANT_ACCESS_DENIED", "Access to the requested tenant is denied"
    if isinstance(exc, (UpstreamOracleUnavailable, ProviderConfigError)):
        return 503, "SERVICE_UNAVAILABLE", "The language model is unavailable"
    if isinstance(exc, PersistenceFailed):
        return 500, "PERSISTENCE_FAILED", "Failed to store results"
    return 500, "INTERNAL_ERROR", "Internal server error"


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Normalize HTTPExceptions into the shared error envelope.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Surface validation errors with structured details for client parsing.
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def ledgerlens_exception_handler(request: Request, exc: LedgerLensError) -> JSONResponse:
    status_code, code, message = map_domain_error(exc)
    headers: dict[str, str] | None = None
    details: dict[str, Any] | None = None
    if isinstance(exc, RateLimited):
        # Only rate limiting carries a retry hint.
        headers = {
            "Retry-After": str(max(1, int(math.ceil(exc.retry_after_ms / 1000.0)))),
            "X-RateLimit-Retry-After-Ms": str(exc.retry_after_ms),
        }
        details = {"retry_after_ms": exc.retry_after_ms}
    if status_code >= 500:
        logger.error("request_failed code=%s error=%s", code, type(exc).__name__)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError) -> JSONResponse:
    logger.error("tenant_predicate_missing path=%s", request.url.path)
    payload = error_response(request=request, code="TENANT_PREDICATE_REQUIRED", message=exc.message)
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_exception path=%s", request.url.path)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)

