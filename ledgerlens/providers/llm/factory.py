from __future__ import annotations

import logging
import threading

from ledgerlens.core.config import get_settings
from ledgerlens.core.errors import ProviderConfigError
from ledgerlens.providers.llm.base import LLMProvider
from ledgerlens.providers.llm.fake import FakeLLMProvider
from ledgerlens.providers.llm.gemini_vertex import GeminiVertexProvider

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("vertex", "fake")


def get_llm_provider(request_id: str, cancel_event: threading.Event) -> LLMProvider:
    # One provider per chat request; the cancel event is shared with the SSE loop.
    settings = get_settings()
    provider = (settings.llm_provider or "").strip().lower()

    if provider == "fake":
        if settings.fake_llm_response:
            return FakeLLMProvider(response=settings.fake_llm_response)
        return FakeLLMProvider()
    if provider == "vertex":
        return GeminiVertexProvider(request_id=request_id, cancel_event=cancel_event)
    logger.error("llm_provider_unsupported provider=%s request_id=%s", provider, request_id)
    raise ProviderConfigError(
        f"Unsupported LLM_PROVIDER {provider!r}; expected one of: {', '.join(SUPPORTED_PROVIDERS)}."
    )
