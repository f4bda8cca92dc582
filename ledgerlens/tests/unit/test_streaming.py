from __future__ import annotations

import json

from ledgerlens.services.streaming import (
    ChartFenceSplitter,
    FrameEncoder,
    done_frame,
    parse_chart,
    sse_heartbeat,
    status_frame,
    text_frame,
)

CHART = {"type": "bar", "title": "Sales", "data": [{"day": "Mon", "sales": 10}], "xAxisKey": "day"}


def _run(deltas: list[str]) -> tuple[list, ChartFenceSplitter]:
    splitter = ChartFenceSplitter()
    frames = []
    for delta in deltas:
        frames.extend(splitter.feed(delta))
    frames.extend(splitter.finish())
    return frames, splitter


def _texts(frames) -> str:
    return "".join(frame.data["delta"] for frame in frames if frame.type == "text")


def test_chart_fence_in_single_delta() -> None:
    frames, splitter = _run([f"A ```chart-json\n{json.dumps(CHART)}\n``` B"])

    assert [frame.type for frame in frames] == ["text", "chart", "text"]
    assert frames[0].data == {"delta": "A "}
    assert frames[1].data == CHART
    assert frames[2].data == {"delta": " B"}
    assert splitter.chart == CHART
    assert splitter.text == "A  B"


def test_fence_split_across_token_boundaries() -> None:
    body = json.dumps(CHART)
    frames, splitter = _run(["Hi ``", "`chart-js", "on\n" + body[:10], body[10:] + "\n``", "`", " bye"])

    assert [frame.type for frame in frames] == ["text", "chart", "text"]
    assert _texts(frames) == "Hi  bye"
    assert splitter.chart == CHART


def test_backticks_that_are_not_a_chart_fence_pass_through() -> None:
    frames, splitter = _run(["use ``", "`sql` blocks"])

    assert splitter.chart is None
    assert _texts(frames) == "use ```sql` blocks"


def test_parse_failure_drops_chart_without_error() -> None:
    frames, splitter = _run(["before ```chart-json\n{not json}\n``` after"])

    assert [frame.type for frame in frames] == ["text", "text"]
    assert splitter.chart is None
    assert _texts(frames) == "before  after"


def test_only_first_chart_is_emitted() -> None:
    fence = f"```chart-json\n{json.dumps(CHART)}\n```"
    frames, _splitter = _run([f"{fence} and {fence}"])

    assert [frame.type for frame in frames].count("chart") == 1


def test_unterminated_fence_is_dropped() -> None:
    frames, splitter = _run(["text ```chart-json\n{\"type\": \"bar\""])

    assert [frame.type for frame in frames] == ["text"]
    assert splitter.chart is None
    assert splitter.text == "text "


def test_held_tail_is_flushed_on_finish() -> None:
    frames, _splitter = _run(["ends with ``"])

    assert _texts(frames) == "ends with ``"


def test_parse_chart_requires_shape() -> None:
    assert parse_chart(json.dumps(CHART)) == CHART
    assert parse_chart(json.dumps({**CHART, "type": "scatter"})) is None
    assert parse_chart(json.dumps({"type": "pie", "data": {}, "xAxisKey": "x"})) is None
    assert parse_chart(json.dumps({"type": "pie", "data": []})) is None
    assert parse_chart("[1, 2]") is None


def test_encoder_numbers_frames_and_frames_sse() -> None:
    encoder = FrameEncoder("req-1", "sess-1")
    first = encoder.encode(status_frame("classifying"))
    second = encoder.encode(text_frame("hello"))
    last = encoder.encode(done_frame("hello"))

    for chunk in (first, second, last):
        assert chunk.startswith("event: message\ndata: ")
        assert chunk.endswith("\n\n")
    payloads = [json.loads(chunk.split("data: ", 1)[1]) for chunk in (first, second, last)]
    assert [payload["seq"] for payload in payloads] == [1, 2, 3]
    assert payloads[0] == {
        "type": "status",
        "request_id": "req-1",
        "session_id": "sess-1",
        "seq": 1,
        "data": {"stage": "classifying"},
    }
    assert payloads[2]["type"] == "done"


def test_heartbeat_frame() -> None:
    assert sse_heartbeat() == "event: heartbeat\ndata: {}\n\n"
