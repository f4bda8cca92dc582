from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Iterable

from ledgerlens.core.config import get_settings
from ledgerlens.core.errors import ProviderConfigError, UpstreamOracleUnavailable

logger = logging.getLogger(__name__)


class GeminiVertexProvider:
    def __init__(self, request_id: str | None = None, cancel_event: threading.Event | None = None) -> None:
        self._settings = get_settings()
        self._request_id = request_id
        # Optional cancellation signal from the caller to stop streaming early.
        self._cancel_event = cancel_event

    def _format_messages(self, messages: list[dict]) -> str:
        # System guidance first, then the conversation in order.
        system_lines: list[str] = []
        other_lines: list[str] = []
        for msg in messages:
            role = msg.get("role", "user")
            line = f"{role.upper()}: {msg.get('content', '')}"
            if role == "system":
                system_lines.append(line)
            else:
                other_lines.append(line)
        return "\n".join(system_lines + other_lines)

    def _validate_config(self) -> tuple[str, str, str]:
        project = self._settings.google_cloud_project
        location = self._settings.google_cloud_location
        model = self._settings.gemini_model
        missing = []
        if not project:
            missing.append("GOOGLE_CLOUD_PROJECT")
        if not location:
            missing.append("GOOGLE_CLOUD_LOCATION")
        if not model:
            missing.append("GEMINI_MODEL")
        if missing:
            raise ProviderConfigError(f"Vertex config missing: set {', '.join(missing)} in .env.")
        return project, location, model

    def _model(self) -> Any:
        project, location, model_name = self._validate_config()
        try:
            from vertexai import init
            from vertexai.generative_models import GenerativeModel
        except ImportError as exc:  # pragma: no cover - import errors are environment-specific
            raise ProviderConfigError(
                "Vertex AI SDK not available. Install the vertex extra (google-cloud-aiplatform)."
            ) from exc
        logger.info("vertex_call_start request_id=%s model=%s", self._request_id, model_name)
        init(project=project, location=location)
        return GenerativeModel(model_name)

    def _auth_errors(self) -> tuple[type[BaseException], ...]:
        from google.api_core.exceptions import PermissionDenied, Unauthenticated
        from google.auth.exceptions import DefaultCredentialsError, RefreshError

        return (DefaultCredentialsError, RefreshError, PermissionDenied, Unauthenticated)

    def complete(self, messages: list[dict]) -> str:
        model = self._model()
        try:
            response = model.generate_content(self._format_messages(messages))
            return str(getattr(response, "text", "") or "")
        except self._auth_errors() as exc:
            logger.warning("vertex_complete_auth_error request_id=%s", self._request_id)
            raise UpstreamOracleUnavailable("Vertex auth error") from exc
        except Exception as exc:
            logger.error("vertex_complete_error request_id=%s", self._request_id)
            raise UpstreamOracleUnavailable("Vertex AI request failed") from exc

    def stream(self, messages: list[dict]) -> Iterable[str]:
        model = self._model()
        timeout_s = max(1, int(self._settings.vertex_stream_timeout_s))
        try:
            responses = model.generate_content(self._format_messages(messages), stream=True)
            deadline = time.monotonic() + timeout_s
            for response in responses:
                if self._cancel_event is not None and self._cancel_event.is_set():
                    # Propagate cancellation to stop the caller's stream promptly.
                    raise asyncio.CancelledError
                if time.monotonic() > deadline:
                    raise UpstreamOracleUnavailable("Vertex stream timed out")
                delta = getattr(response, "text", None)
                if delta:
                    yield delta
        except (asyncio.CancelledError, UpstreamOracleUnavailable):
            raise
        except self._auth_errors() as exc:
            logger.warning("vertex_stream_auth_error request_id=%s", self._request_id)
            raise UpstreamOracleUnavailable("Vertex auth error") from exc
        except Exception as exc:
            logger.error("vertex_stream_error request_id=%s", self._request_id)
            raise UpstreamOracleUnavailable("Vertex AI request failed") from exc
