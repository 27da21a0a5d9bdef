"""
Base LLM Provider Implementation.

Provides the tool-call loop and error classification shared by all
providers. Subclasses only translate one model round to and from the
vendor API.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from ..domain.entities import (
    ChatEvent,
    ChatEventType,
    MessageRole,
    ModelResponse,
    ModelSession,
    ToolCall,
)
from ..domain.ports import ILLMProvider
from ..exceptions import (
    BadRequestError,
    ModelNotFoundError,
    ProviderError,
    RateLimitError,
    ServerError,
)
from ..tools.registry import execute_tool_call

logger = logging.getLogger(__name__)

# Extra completion room granted on top of a reasoning budget.
THINKING_MAX_TOKENS_MARGIN = 4096


@dataclass
class LLMProviderConfig:
    """Configuration for LLM providers.

    Attributes:
        api_key: API key for the provider
        base_url: Optional custom base URL
        timeout: Request timeout in seconds
        max_retries: SDK-level retry attempts (turn retries happen in the queue)
        max_tokens: Default max tokens
        max_tool_rounds: Model rounds allowed in one turn
    """

    api_key: str
    base_url: Optional[str] = None
    timeout: float = 120.0
    max_retries: int = 0
    max_tokens: int = 4096
    max_tool_rounds: int = 10
    extra: dict[str, Any] = field(default_factory=dict)


def _retry_after(error: Exception) -> Optional[float]:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) or {}
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def classify_status_error(
    error: Exception, provider: str, model_id: Optional[str] = None
) -> ProviderError:
    """Map an HTTP status error from a vendor SDK to the error taxonomy."""
    status = getattr(error, "status_code", None)
    message = str(error)
    context = {"provider": provider, "model_id": model_id, "cause": error}

    if status == 429:
        return RateLimitError(message, retry_after=_retry_after(error), **context)
    if status == 404:
        return ModelNotFoundError(message, status_code=status, **context)
    if status in (400, 413, 422):
        return BadRequestError(message, status_code=status, **context)
    if status is not None and status >= 500:
        return ServerError(message, status_code=status, **context)
    return ProviderError(message, status_code=status, **context)


def parse_tool_arguments(raw: str, tool_name: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Invalid JSON arguments for tool {tool_name}: {raw[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class BaseLLMProvider(ILLMProvider, ABC):
    """Base class for LLM provider implementations.

    ``stream`` drives the whole turn: each round opens a new message, relays
    the vendor deltas, runs requested tools and feeds their results back
    until the model answers without tool calls.
    """

    supports_structured_thinking = False

    def __init__(self, config: LLMProviderConfig):
        """Initialize the provider.

        Args:
            config: Provider configuration
        """
        self.config = config
        self._sequence_counter = 0

    def _next_sequence(self) -> int:
        """Get the next sequence number for events."""
        self._sequence_counter += 1
        return self._sequence_counter

    async def stream(self, session: ModelSession) -> AsyncIterator[ChatEvent]:
        history = self._format_messages(session)

        for round_number in range(1, self.config.max_tool_rounds + 1):
            yield ChatEvent.new_message(self._next_sequence())

            response: Optional[ModelResponse] = None
            async for event in self._stream_round(session, history):
                if event.type == ChatEventType.END_MESSAGE:
                    response = event.response
                yield event

            if response is None:
                raise ProviderError(
                    "Stream ended without a final message",
                    provider=self.provider_name,
                    model_id=session.model_id,
                )

            if not response.tool_calls:
                return

            executed: list[ToolCall] = []
            for call in response.tool_calls:
                executed.append(await execute_tool_call(call, session.tools))

            self._append_round(history, response, executed)

            for call in executed:
                yield ChatEvent.end_message(
                    ModelResponse(
                        role=MessageRole.TOOL,
                        content=json.dumps(call.result, default=str),
                        model_id=response.model_id,
                    ),
                    self._next_sequence(),
                )

        logger.warning(
            f"{self.provider_name}: stopped after {self.config.max_tool_rounds} tool rounds"
        )

    def _max_tokens(self, session: ModelSession) -> int:
        max_tokens = session.max_tokens or self.config.max_tokens
        if session.thinking:
            budget = session.thinking.get("budget_tokens", 0)
            max_tokens = max(max_tokens, budget + THINKING_MAX_TOKENS_MARGIN)
        return max_tokens

    @abstractmethod
    def _format_messages(self, session: ModelSession) -> list[dict[str, Any]]:
        """Convert the session context into vendor message dicts."""
        pass

    @abstractmethod
    def _stream_round(
        self, session: ModelSession, history: list[dict[str, Any]]
    ) -> AsyncIterator[ChatEvent]:
        """Stream one model message.

        Must yield delta and TOOL_CALL events followed by exactly one
        END_MESSAGE carrying the assistant ModelResponse.
        """
        pass

    @abstractmethod
    def _append_round(
        self,
        history: list[dict[str, Any]],
        response: ModelResponse,
        executed: list[ToolCall],
    ) -> None:
        """Append the assistant message and tool results for the next round."""
        pass
