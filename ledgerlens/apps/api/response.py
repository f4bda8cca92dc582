from __future__ import annotations

import re
from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"
# Request ids end up in key=value log lines and SSE frames; keep them to a safe alphabet.
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = Field(default=API_VERSION)


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    supplied = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    request_id = supplied if _REQUEST_ID_PATTERN.match(supplied) else str(uuid4())
    request.state.request_id = request_id
    return request_id


def success_response(*, request: Request, data: BaseModel | dict[str, Any]) -> dict[str, Any]:
    meta = ResponseMeta(request_id=get_request_id(request))
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return {"data": data, "meta": meta.model_dump()}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Error envelopes omit `details` entirely when there are none.
    meta = ResponseMeta(request_id=get_request_id(request))
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": meta.model_dump()}
