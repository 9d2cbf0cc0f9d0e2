"""Convenience exports for dagent model gateway implementations."""

from .chat_client import ChatCompletionsClient
from .llm_client import (
    LLMArgumentsError,
    LLMClient,
    LLMClientError,
    LLMMissingToolCallError,
    LLMNoChoicesError,
    LLMResponseFormatError,
    LLMStatusError,
    LLMTransportError,
)

__all__ = [
    "ChatCompletionsClient",
    "LLMArgumentsError",
    "LLMClient",
    "LLMClientError",
    "LLMMissingToolCallError",
    "LLMNoChoicesError",
    "LLMResponseFormatError",
    "LLMStatusError",
    "LLMTransportError",
]
