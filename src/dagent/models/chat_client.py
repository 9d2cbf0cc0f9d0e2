"""Production client that speaks the Chat Completions API with a forced tool call."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, Optional, Tuple

from ..plan.contract import ToolDefinition
from .llm_client import LLMClient, LLMStatusError, LLMTransportError

__all__ = ["ChatCompletionsClient", "DEFAULT_BASE_URL", "Transport"]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1/chat/completions"

Transport = Callable[[Dict[str, Any]], Tuple[int, str]]


class ChatCompletionsClient(LLMClient):
    """Thin adapter around a Chat Completions compatible endpoint."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = "gpt-4.1",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        tool: Optional[ToolDefinition] = None,
    ) -> None:
        super().__init__(model=model, tool=tool)
        self._api_key = api_key or os.getenv("DAGENT_API_KEY") or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url
        timeout_override = os.getenv("DAGENT_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
                if parsed > 0:
                    timeout = parsed
            except ValueError:
                pass
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Send the request over the configured transport and enforce a 2xx status."""
        try:
            status, body = self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        if status < 200 or status >= 300:
            raise LLMStatusError(status, body or "")
        LOGGER.debug("Model responded with status %s (%d bytes)", status, len(body or ""))
        return body

    def _http_transport(self, payload: Dict[str, Any]) -> tuple[int, str]:
        """Default HTTP transport built on ``urllib``."""
        import urllib.error
        import urllib.request

        if os.getenv("DAGENT_DEBUG_PAYLOAD"):
            LOGGER.debug("Model request payload:\n%s", json.dumps(payload, indent=2, sort_keys=True))

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            return error.code, message
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Model response timed out.") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach model endpoint: {error.reason}") from error

        return status, raw.decode("utf-8", errors="replace")
