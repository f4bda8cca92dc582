from __future__ import annotations

from typing import Any, Literal, TypedDict


class StatusData(TypedDict):
    stage: str


class TextData(TypedDict):
    delta: str


class ChartData(TypedDict, total=False):
    type: Literal["bar", "area", "line", "pie"]
    title: str
    data: list[dict[str, Any]]
    dataKeys: list[dict[str, Any]]
    xAxisKey: str


class ErrorData(TypedDict):
    message: str
    code: str


class DoneData(TypedDict):
    text: str


FrameType = Literal["status", "text", "chart", "error", "done"]


class EventPayload(TypedDict, total=False):
    type: FrameType
    request_id: str
    session_id: str
    seq: int
    data: dict[str, Any]
