from __future__ import annotations

from typing import Iterable, Protocol


class LLMProvider(Protocol):
    # Messages are {"role", "content"} dicts; "task" tags the prompt kind and is optional.
    def complete(self, messages: list[dict]) -> str:
        ...

    def stream(self, messages: list[dict]) -> Iterable[str]:
        ...
