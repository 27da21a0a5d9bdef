"""
OpenAI-compatible LLM Provider.

Serves both the direct OpenAI integration and OpenRouter, the general
aggregation provider, which speaks the same chat-completions protocol from
a different base URL.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx
import openai
from openai import AsyncOpenAI

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

# Request parameters the SDK accepts directly; anything else travels in extra_body.
SDK_PARAMS = {
    "max_tokens",
    "max_completion_tokens",
    "reasoning_effort",
    "temperature",
    "top_p",
}


class OpenAICompatibleProvider(BaseLLMProvider):
    """Chat-completions provider for OpenAI and OpenRouter.

    Usage:
        provider = OpenAICompatibleProvider(
            LLMProviderConfig(api_key="sk-or-...", base_url="https://openrouter.ai/api/v1"),
            provider_name="openrouter",
        )
    """

    def __init__(
        self,
        config: LLMProviderConfig,
        provider_name: str = "openai",
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initialize the provider.

        Args:
            config: Provider configuration
            provider_name: "openai" or "openrouter"
            client: Pre-built SDK client (tests inject a mock here)
        """
        super().__init__(config)
        self._provider_name = provider_name
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    @property
    def provider_name(self) -> str:
        return self._provider_name

    def _format_messages(self, session: ModelSession) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if session.system_prompt:
            messages.append({"role": "system", "content": session.system_prompt})
        messages.extend(
            {"role": m["role"], "content": m["content"]} for m in session.messages
        )
        return messages

    def _build_kwargs(
        self, session: ModelSession, history: list[dict[str, Any]]
    ) -> dict[str, Any]:
        limit_key = "max_completion_tokens" if self._provider_name == "openai" else "max_tokens"
        kwargs: dict[str, Any] = {
            "model": session.model_id,
            "messages": history,
            "stream": True,
            "stream_options": {"include_usage": True},
            limit_key: self._max_tokens(session),
        }

        if session.tools:
            kwargs["tools"] = format_tools_for_llm(session.tools, style="openai")

        extra_body: dict[str, Any] = {}
        for key, value in session.params.items():
            if key in SDK_PARAMS:
                kwargs[key] = value
            else:
                extra_body[key] = value
        if extra_body:
            kwargs["extra_body"] = extra_body
        return kwargs

    async def _stream_round(
        self, session: ModelSession, history: list[dict[str, Any]]
    ) -> AsyncIterator[ChatEvent]:
        kwargs = self._build_kwargs(session, history)

        text_parts: list[str] = []
        reasoning_parts: list[str] = []
        tool_calls_in_progress: dict[int, dict[str, str]] = {}
        model_id = session.model_id
        finish_reason: Optional[str] = None
        native_finish_reason: Optional[str] = None
        input_tokens = 0
        output_tokens = 0

        try:
            stream_response = await self.client.chat.completions.create(**kwargs)

            async for chunk in stream_response:
                if getattr(chunk, "model", None):
                    model_id = chunk.model
                if getattr(chunk, "usage", None):
                    input_tokens = chunk.usage.prompt_tokens or 0
                    output_tokens = chunk.usage.completion_tokens or 0
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
                native_finish_reason = (
                    getattr(choice, "native_finish_reason", None) or native_finish_reason
                )

                if delta is None:
                    continue

                if delta.content:
                    text_parts.append(delta.content)
                    yield ChatEvent.text_delta(delta.content, self._next_sequence())

                reasoning = getattr(delta, "reasoning", None) or getattr(
                    delta, "reasoning_content", None
                )
                if reasoning:
                    reasoning_parts.append(reasoning)
                    yield ChatEvent.thinking_delta(reasoning, self._next_sequence())

                for tc in delta.tool_calls or []:
                    entry = tool_calls_in_progress.setdefault(
                        tc.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function and tc.function.name:
                        entry["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        entry["arguments"] += tc.function.arguments

        except openai.APIConnectionError as e:
            raise NetworkError(
                str(e), provider=self.provider_name, model_id=session.model_id, cause=e
            ) from e
        except openai.APIStatusError as e:
            raise classify_status_error(e, self.provider_name, session.model_id) from e
        except httpx.TransportError as e:
            raise NetworkError(
                str(e), provider=self.provider_name, model_id=session.model_id, cause=e
            ) from e

        tool_calls: list[ToolCall] = []
        for index in sorted(tool_calls_in_progress):
            entry = tool_calls_in_progress[index]
            call = ToolCall(
                id=entry["id"] or f"call_{index}",
                name=entry["name"],
                arguments=parse_tool_arguments(entry["arguments"], entry["name"]),
            )
            tool_calls.append(call)
            yield ChatEvent.tool(call, self._next_sequence())

        raw: dict[str, Any] = {
            "model": model_id,
            "choices": [{"finish_reason": finish_reason}],
        }
        if native_finish_reason:
            raw["candidates"] = [{"finishReason": native_finish_reason}]

        yield ChatEvent.end_message(
            ModelResponse(
                content="".join(text_parts),
                reasoning="".join(reasoning_parts) or None,
                model_id=model_id,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                finish_reason=finish_reason,
                raw=raw,
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
        history.append({
            "role": "assistant",
            "content": response.content or None,
            "tool_calls": [
                {
                    "id": c.id,
                    "type": "function",
                    "function": {"name": c.name, "arguments": json.dumps(c.arguments)},
                }
                for c in executed
            ],
        })
        for c in executed:
            history.append({
                "role": "tool",
                "tool_call_id": c.id,
                "content": json.dumps(c.result, default=str),
            })
