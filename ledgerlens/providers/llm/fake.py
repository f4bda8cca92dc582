from __future__ import annotations

from collections import deque
from typing import Iterable, Mapping


class FakeLLMProvider:
    def __init__(
        self,
        response: str = "This is a fake response.",
        scripted: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        # Deterministic responses keep tests stable without external calls.
        self._response = response
        # Per-task queues let a test script classify / generate / answer turns independently.
        self._scripted = {task: deque(replies) for task, replies in (scripted or {}).items()}
        self.calls: list[tuple[str, list[dict]]] = []

    def _task(self, messages: list[dict]) -> str:
        for msg in messages:
            if msg.get("task"):
                return str(msg["task"])
        return "answer"

    def _next(self, messages: list[dict]) -> str:
        task = self._task(messages)
        self.calls.append((task, messages))
        queue = self._scripted.get(task)
        if queue:
            return queue.popleft()
        if task == "classify":
            return "CONVERSATION"
        return self._response

    def complete(self, messages: list[dict]) -> str:
        return self._next(messages)

    def stream(self, messages: list[dict]) -> Iterable[str]:
        # Yield word tokens so streaming consumers see several deltas.
        reply = self._next(messages)
        words = reply.split(" ")
        for index, token in enumerate(words):
            yield token if index == len(words) - 1 else f"{token} "
