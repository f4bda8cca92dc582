from __future__ import annotations

import threading

import pytest

from ledgerlens.core.config import get_settings
from ledgerlens.core.errors import ProviderConfigError
from ledgerlens.providers.llm.factory import get_llm_provider
from ledgerlens.providers.llm.fake import FakeLLMProvider
from ledgerlens.providers.llm.gemini_vertex import GeminiVertexProvider


def test_factory_selects_provider(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "fake")
    get_settings.cache_clear()
    assert isinstance(get_llm_provider("req-1", threading.Event()), FakeLLMProvider)

    monkeypatch.setenv("LLM_PROVIDER", "vertex")
    get_settings.cache_clear()
    assert isinstance(get_llm_provider("req-1", threading.Event()), GeminiVertexProvider)


def test_factory_passes_canned_reply_to_fake(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "FAKE")
    monkeypatch.setenv("FAKE_LLM_RESPONSE", "Demo answer")
    get_settings.cache_clear()

    llm = get_llm_provider("req-1", threading.Event())

    assert llm.complete([{"role": "user", "content": "hi"}]) == "Demo answer"


def test_factory_rejects_unknown_provider(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    get_settings.cache_clear()

    with pytest.raises(ProviderConfigError) as excinfo:
        get_llm_provider("req-1", threading.Event())
    assert "openai" in str(excinfo.value)


def test_vertex_requires_project_and_location(monkeypatch) -> None:
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
    monkeypatch.delenv("GOOGLE_CLOUD_LOCATION", raising=False)
    get_settings.cache_clear()
    provider = GeminiVertexProvider(request_id="req-1")

    with pytest.raises(ProviderConfigError) as excinfo:
        provider.complete([{"role": "user", "content": "hi"}])
    assert "GOOGLE_CLOUD_PROJECT" in str(excinfo.value)


def test_fake_provider_scripts_per_task() -> None:
    llm = FakeLLMProvider(scripted={"classify": ["QUERY"], "answer": ["one two three"]})

    assert llm.complete([{"role": "system", "content": "", "task": "classify"}]) == "QUERY"
    assert llm.complete([{"role": "system", "content": "", "task": "classify"}]) == "CONVERSATION"
    assert list(llm.stream([{"role": "user", "content": "x"}])) == ["one ", "two ", "three"]
    assert list(llm.stream([{"role": "user", "content": "x"}])) == ["This ", "is ", "a ", "fake ", "response."]
    assert [task for task, _messages in llm.calls] == ["classify", "classify", "answer", "answer"]
