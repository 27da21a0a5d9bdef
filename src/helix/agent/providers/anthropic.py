"""
Anthropic Claude LLM Provider.

Direct integration for models under the ``anthropic/`` namespace. Used
instead of the aggregation provider because reasoning blocks must be
replayed verbatim alongside tool results, which only the native API does
reliably.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

import anthropic
import httpx
from anthropic import AsyncAnthropic

from ..domain.entities import (
    ChatEvent,
    ModelResponse,
    ModelSession,
    ToolCall,
)
from ..exceptions import NetworkError
from ..tools.registry import format_tools_for_llm
from .base import (
    BaseLLMProvider,
    LLMProviderConfig,
    classify_status_error,
    parse_tool_arguments,
)

logger = logging.getLogger(__name__)


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Claude provider implementation.

    Supports:
    - Streaming text and thinking deltas
    - Tool calling with thinking-block replay
    - Extended thinking via a structured token budget

    Usage:
        provider = AnthropicProvider(LLMProviderConfig(api_key="sk-ant-..."))
        session = ModelSession(model_id="claude-sonnet-4-5", provider="anthropic")

        async for event in provider.stream(session):
            print(event)
    """

    supports_structured_thinking = True

    def __init__(self, config: LLMProviderConfig, client: Optional[AsyncAnthropic] = None):
        """Initialize the Anthropic provider.

        Args:
            config: Provider configuration
            client: Pre-built SDK client (tests inject a mock here)
        """
        super().__init__(config)
        self.client = client or AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _format_messages(self, session: ModelSession) -> list[dict[str, Any]]:
        """Anthropic takes system text separately; only user/assistant here."""
        return [
            {"role": m["role"], "content": m["content"]}
            for m in session.messages
            if m.get("role") in ("user", "assistant")
        ]

    def _system_prompt(self, session: ModelSession) -> Optional[str]:
        parts = [m["content"] for m in session.messages if m.get("role") == "system"]
        if session.system_prompt:
            parts.insert(0, session.system_prompt)
        return "\n\n".join(parts) if parts else None

    def _build_kwargs(
        self, session: ModelSession, history: list[dict[str, Any]]
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": session.model_id,
            "messages": history,
            "max_tokens": self._max_tokens(session),
        }

        system = self._system_prompt(session)
        if system:
            kwargs["system"] = system

        if session.tools:
            kwargs["tools"] = format_tools_for_llm(session.tools, style="anthropic")

        if session.thinking:
            kwargs["thinking"] = {
                "type": "enabled",
                "budget_tokens": session.thinking["budget_tokens"],
            }

        # Raw parameters from the thinking fallback win over derived ones.
        kwargs.update(session.params)
        return kwargs

    async def _stream_round(
        self, session: ModelSession, history: list[dict[str, Any]]
    ) -> AsyncIterator[ChatEvent]:
        kwargs = self._build_kwargs(session, history)

        try:
            async with self.client.messages.stream(**kwargs) as stream_response:
                current_tool: Optional[dict[str, str]] = None
                tool_calls: list[ToolCall] = []

                async for event in stream_response:
                    if event.type == "content_block_start":
                        block = event.content_block
                        if block.type == "tool_use":
                            current_tool = {"id": block.id, "name": block.name, "input": ""}

                    elif event.type == "content_block_delta":
                        delta = event.delta
                        if delta.type == "text_delta":
                            yield ChatEvent.text_delta(delta.text, self._next_sequence())
                        elif delta.type == "thinking_delta":
                            yield ChatEvent.thinking_delta(delta.thinking, self._next_sequence())
                        elif delta.type == "input_json_delta" and current_tool:
                            current_tool["input"] += delta.partial_json

                    elif event.type == "content_block_stop" and current_tool:
                        call = ToolCall(
                            id=current_tool["id"],
                            name=current_tool["name"],
                            arguments=parse_tool_arguments(
                                current_tool["input"], current_tool["name"]
                            ),
                        )
                        tool_calls.append(call)
                        yield ChatEvent.tool(call, self._next_sequence())
                        current_tool = None

                final = await stream_response.get_final_message()

        except anthropic.APIConnectionError as e:
            raise NetworkError(
                str(e), provider=self.provider_name, model_id=session.model_id, cause=e
            ) from e
        except anthropic.APIStatusError as e:
            raise classify_status_error(e, self.provider_name, session.model_id) from e
        except httpx.TransportError as e:
            raise NetworkError(
                str(e), provider=self.provider_name, model_id=session.model_id, cause=e
            ) from e

        text = "".join(b.text for b in final.content if b.type == "text")
        thinking = "".join(b.thinking for b in final.content if b.type == "thinking")

        yield ChatEvent.end_message(
            ModelResponse(
                content=text,
                reasoning=thinking or None,
                model_id=final.model,
                input_tokens=final.usage.input_tokens,
                output_tokens=final.usage.output_tokens,
                finish_reason=final.stop_reason,
                raw=final.model_dump(exclude_none=True),
                tool_calls=tool_calls,
            ),
            self._next_sequence(),
        )

    def _append_round(
        self,
        history: list[dict[str, Any]],
        response: ModelResponse,
        executed: list[ToolCall],
    ) -> None:
        # Thinking blocks carry signatures and must be sent back unchanged.
        content = (response.raw or {}).get("content") or [
            {"type": "tool_use", "id": c.id, "name": c.name, "input": c.arguments}
            for c in executed
        ]
        history.append({"role": "assistant", "content": content})
        history.append({
            "role": "user",
            "content": [
                {
                    "type": "tool_result",
                    "tool_use_id": c.id,
                    "content": json.dumps(c.result, default=str),
                }
                for c in executed
            ],
        })
