from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from ledgerlens.domain.events import EventPayload, FrameType

logger = logging.getLogger(__name__)

CHART_OPEN = "```chart-json"
CHART_CLOSE = "```"
CHART_TYPES = frozenset({"bar", "area", "line", "pie"})


@dataclass(frozen=True)
class Frame:
    type: FrameType
    data: dict[str, Any] = field(default_factory=dict)


def status_frame(stage: str) -> Frame:
    return Frame("status", {"stage": stage})


def text_frame(delta: str) -> Frame:
    return Frame("text", {"delta": delta})


def error_frame(code: str, message: str) -> Frame:
    return Frame("error", {"code": code, "message": message})


def done_frame(text: str) -> Frame:
    return Frame("done", {"text": text})


def parse_chart(body: str) -> dict[str, Any] | None:
    # Anything that is not a well-formed chart object is dropped silently.
    try:
        chart = json.loads(body)
    except ValueError:
        return None
    if not isinstance(chart, dict):
        return None
    if chart.get("type") not in CHART_TYPES:
        return None
    if not isinstance(chart.get("data"), list) or not isinstance(chart.get("xAxisKey"), str):
        return None
    return chart


def _held_tail(text: str) -> int:
    # Length of the longest suffix that could still grow into the open marker.
    for size in range(min(len(text), len(CHART_OPEN) - 1), 0, -1):
        if CHART_OPEN.startswith(text[-size:]):
            return size
    return 0


class ChartFenceSplitter:
    """Split an answer token stream into prose and at most one chart.

    The splitter is either passing text through or buffering a chart
    fence. In passthrough, a trailing fragment that might be the start of
    the open marker is held back until the next delta disambiguates it.
    """

    def __init__(self) -> None:
        self._buffering = False
        self._pending = ""
        self._chart_body = ""
        self.chart: dict[str, Any] | None = None
        self.text_parts: list[str] = []

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    def _emit_text(self, frames: list[Frame], delta: str) -> None:
        if delta:
            self.text_parts.append(delta)
            frames.append(text_frame(delta))

    def feed(self, delta: str) -> list[Frame]:
        frames: list[Frame] = []
        if self._buffering:
            self._chart_body += delta
        else:
            self._pending += delta
        while True:
            if self._buffering:
                end = self._chart_body.find(CHART_CLOSE)
                if end < 0:
                    break
                body, rest = self._chart_body[:end], self._chart_body[end + len(CHART_CLOSE):]
                self._close_chart(frames, body)
                self._buffering = False
                self._chart_body = ""
                self._pending = rest
                continue
            start = self._pending.find(CHART_OPEN)
            if start >= 0:
                self._emit_text(frames, self._pending[:start])
                self._chart_body = self._pending[start + len(CHART_OPEN):]
                self._pending = ""
                self._buffering = True
                continue
            hold = _held_tail(self._pending)
            cut = len(self._pending) - hold
            self._emit_text(frames, self._pending[:cut])
            self._pending = self._pending[cut:]
            break
        return frames

    def _close_chart(self, frames: list[Frame], body: str) -> None:
        chart = parse_chart(body.strip())
        if chart is None:
            logger.info("chart_parse_failed chars=%s", len(body))
            return
        if self.chart is not None:
            logger.info("chart_ignored reason=already_emitted")
            return
        self.chart = chart
        frames.append(Frame("chart", chart))

    def finish(self) -> list[Frame]:
        frames: list[Frame] = []
        if self._buffering:
            # Unterminated fence at end of stream is discarded.
            logger.info("chart_unterminated chars=%s", len(self._chart_body))
            self._buffering = False
            self._chart_body = ""
        else:
            self._emit_text(frames, self._pending)
        self._pending = ""
        return frames


class FrameEncoder:
    def __init__(self, request_id: str, session_id: str) -> None:
        self._request_id = request_id
        self._session_id = session_id
        self._seq = 0

    def payload(self, frame: Frame) -> EventPayload:
        # Always include request/session identifiers for traceability across streamed events.
        self._seq += 1
        return {
            "type": frame.type,
            "request_id": self._request_id,
            "session_id": self._session_id,
            "seq": self._seq,
            "data": frame.data,
        }

    def encode(self, frame: Frame) -> str:
        return sse_message(dict(self.payload(frame)))


def sse_message(payload: dict) -> str:
    # SSE framing invariants: event name must be "message" and data must be a compact JSON line.
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"event: message\ndata: {data}\n\n"


def sse_heartbeat() -> str:
    return "event: heartbeat\ndata: {}\n\n"
