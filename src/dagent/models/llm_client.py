"""Model gateway base class: request serialisation and structured reply parsing."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..conversation import ChatMessage, MessageRole, ToolCall
from ..plan.contract import ToolDefinition, tool_definition, validate_plan_arguments
from ..plan.schema import PlanResponse
from ..utils.cancellation import CancellationToken, run_cancelable

__all__ = [
    "ExchangeLogger",
    "LLMArgumentsError",
    "LLMClient",
    "LLMClientError",
    "LLMMissingToolCallError",
    "LLMNoChoicesError",
    "LLMResponseFormatError",
    "LLMStatusError",
    "LLMTransportError",
    "build_messages",
]

LOGGER = logging.getLogger(__name__)

ExchangeLogger = Callable[[Dict[str, Any], Optional[str], Optional[Exception]], None]


class LLMClientError(RuntimeError):
    """Base error raised for model backend contract failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMStatusError(LLMClientError):
    """Raised when the backend answers with a non-success HTTP status."""

    def __init__(self, status: int, body: str = "") -> None:
        snippet = body[:4096]
        message = f"model: status {status}"
        if snippet:
            message = f"{message}: {snippet}"
        super().__init__(message)
        self.status = status
        self.body = snippet


class LLMResponseFormatError(LLMClientError):
    """Raised when the response body is not the expected JSON document."""


class LLMNoChoicesError(LLMClientError):
    """Raised when the response contains no choices."""


class LLMMissingToolCallError(LLMClientError):
    """Raised when the assistant reply does not invoke the plan tool."""


class LLMArgumentsError(LLMClientError):
    """Raised when tool arguments do not decode into a valid plan response."""

    def __init__(self, message: str, *, violations: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.violations = list(violations)


def build_messages(history: Sequence[ChatMessage], *, tool_name: str) -> List[Dict[str, Any]]:
    """Serialise chat history into the backend message format."""
    messages: List[Dict[str, Any]] = []
    for entry in history:
        message: Dict[str, Any] = {"role": MessageRole(entry.role).value}
        if entry.content:
            message["content"] = entry.content
        if entry.role == MessageRole.TOOL:
            message["name"] = tool_name
            if entry.tool_call_id:
                message["tool_call_id"] = entry.tool_call_id
        if entry.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in entry.tool_calls
            ]
        messages.append(message)
    return messages


class LLMClient:
    """Sends the conversation to a backend and parses the single plan tool call.

    Subclasses provide the transport through :meth:`_raw_invoke`; everything
    about the request shape and the response contract lives here.
    """

    def __init__(self, model: str, *, tool: Optional[ToolDefinition] = None) -> None:
        if not model:
            raise ValueError("A model name is required.")
        self._model = model
        self._tool = tool or tool_definition()

    @property
    def model(self) -> str:
        """Return the model name sent with every request."""
        return self._model

    @property
    def tool(self) -> ToolDefinition:
        return self._tool

    def build_payload(self, history: Sequence[ChatMessage]) -> Dict[str, Any]:
        """Render the chat completion request body for ``history``."""
        return {
            "model": self._model,
            "messages": build_messages(history, tool_name=self._tool.name),
            "tools": [self._tool.to_tool_spec()],
            "tool_choice": self._tool.to_tool_choice(),
        }

    def request_plan(
        self,
        history: Sequence[ChatMessage],
        *,
        cancel: Optional[CancellationToken] = None,
        logger: Optional[ExchangeLogger] = None,
    ) -> tuple[PlanResponse, ToolCall]:
        """Send exactly one request and return the parsed plan and its tool call."""
        payload = self.build_payload(history)
        raw: Optional[str] = None
        try:
            raw = run_cancelable(lambda: self._raw_invoke(payload), cancel, name="dagent-model-request")
            result = self.parse_response(raw)
        except LLMClientError as error:
            LOGGER.warning("Model request failed: %s", error)
            if logger:
                logger(payload, raw, error)
            raise
        if logger:
            logger(payload, raw, None)
        return result

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")

    @staticmethod
    def parse_response(raw_response: str) -> tuple[PlanResponse, ToolCall]:
        """Extract and validate ``choices[0].message.tool_calls[0]`` from a response body."""
        try:
            completion = json.loads(raw_response)
        except (TypeError, json.JSONDecodeError) as error:
            raise LLMResponseFormatError(f"model: decode response: {error}") from error
        if not isinstance(completion, dict):
            raise LLMResponseFormatError("model: response body is not a JSON object")

        choices = completion.get("choices")
        if not isinstance(choices, list) or not choices:
            raise LLMNoChoicesError("model: response contained no choices")

        choice = choices[0] if isinstance(choices[0], dict) else {}
        message = choice.get("message") if isinstance(choice.get("message"), dict) else {}
        tool_calls = message.get("tool_calls")
        if not isinstance(tool_calls, list) or not tool_calls or not isinstance(tool_calls[0], dict):
            raise LLMMissingToolCallError("model: assistant did not call the tool")

        call = tool_calls[0]
        function = call.get("function") if isinstance(call.get("function"), dict) else {}
        arguments = function.get("arguments")
        if not isinstance(arguments, str):
            raise LLMArgumentsError("model: tool arguments are missing")

        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError as error:
            raise LLMArgumentsError(f"model: decode tool arguments: {error}") from error

        violations = validate_plan_arguments(decoded)
        if violations:
            raise LLMArgumentsError(
                "model: tool arguments do not match the plan schema: " + "; ".join(violations[:5]),
                violations=violations,
            )

        try:
            plan = PlanResponse.model_validate(decoded)
        except ValidationError as error:
            raise LLMArgumentsError(f"model: tool arguments rejected: {error}") from error

        tool_call = ToolCall(
            id=str(call.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=arguments,
        )
        return plan, tool_call
