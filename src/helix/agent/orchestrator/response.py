"""
Response Orchestrator.

Drives a single agent turn: picks the provider, streams the model output
into a persisted message with debounced writes and live updates, records
tool usage, finalizes every model message and sorts failures into
"retry", "surface to the user" and "give up".

Turn lifecycle:
    IDLE -> AWAITING_FIRST_EVENT -> STREAMING -> FINALIZING -> SUCCEEDED
    any state -> FAILED
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from ..config import AgentSettings
from ..domain.entities import (
    Agent,
    Chat,
    ChatEvent,
    ChatEventType,
    LiveUpdateType,
    Message,
    MessageRole,
    ModelResponse,
    ModelSession,
    ToolCall,
)
from ..domain.ports import (
    IAgentStore,
    IBroadcaster,
    IChatStore,
    IContextBuilder,
    ILLMProvider,
    IModelRegistry,
    ITaskQueue,
)
from ..exceptions import (
    BadRequestError,
    MissingCapabilityError,
    ModelNotFoundError,
    TransientProviderError,
)
from ..providers.selector import ProviderRoute, ProviderSelector
from ..resilience import TURN_RETRY_POLICY
from ..tools.registry import ToolRegistry
from .event_streamer import EventStreamer
from .stream_buffer import Clock, StreamBuffer

logger = logging.getLogger(__name__)

# Tools whose calls are not announced to chat subscribers.
QUIET_TOOLS = frozenset({"view_system_prompt", "update_system_prompt"})

SAFETY_NOTICE = (
    "_The AI was unable to respond due to content safety filters. "
    "Try rephrasing your message or starting a new conversation._"
)
INCOMPLETE_NOTICE = (
    "_The AI was unable to complete its response (reason: {reason}). Please try again._"
)
EMPTY_NOTICE = (
    "_The AI returned an empty response. This may be due to content filtering "
    "or a temporary issue. Please try again._"
)

NORMAL_FINISH_REASONS = {"stop", "end_turn", "tool_calls", "tool_use", "stop_sequence"}

ModerationHook = Callable[[Message], Awaitable[Any]]
ProviderFactory = Callable[[ProviderRoute], ILLMProvider]


class TurnStatus(str, Enum):
    """Lifecycle of one agent turn."""

    IDLE = "idle"
    AWAITING_FIRST_EVENT = "awaiting_first_event"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _blank(text: Optional[str]) -> bool:
    return not text or not text.strip()


def _finish_signals(response: ModelResponse) -> tuple[Optional[str], Optional[str]]:
    """Pull (finish_reason, block_reason) out of the provider payload."""
    raw = response.raw or {}
    finish = response.finish_reason
    block = (raw.get("promptFeedback") or {}).get("blockReason")

    candidates = raw.get("candidates") or []
    if candidates and isinstance(candidates[0], dict):
        finish = candidates[0].get("finishReason") or finish

    if not finish:
        choices = raw.get("choices") or []
        if choices and isinstance(choices[0], dict):
            finish = choices[0].get("finish_reason")
    return finish, block


def empty_response_notice(response: ModelResponse) -> str:
    """User-facing text for a reply that came back empty."""
    finish, block = _finish_signals(response)

    if "SAFETY" in {str(finish).upper(), str(block).upper()} or finish == "content_filter":
        return SAFETY_NOTICE
    if finish and str(finish).lower() not in NORMAL_FINISH_REASONS:
        return INCOMPLETE_NOTICE.format(reason=finish)
    return EMPTY_NOTICE


def tool_label(call: ToolCall) -> str:
    """URL argument when the tool fetched one, otherwise the tool name."""
    url = (call.arguments or {}).get("url")
    return url if isinstance(url, str) and url else call.name


class ResponseTurn:
    """Per-turn state machine.

    Holds the two stream buffers, the message currently being streamed and
    the tools used so far. Nothing here outlives the turn.
    """

    def __init__(
        self,
        chat: Chat,
        agent: Agent,
        chat_store: IChatStore,
        streamer: EventStreamer,
        settings: AgentSettings,
        clock: Optional[Clock] = None,
        quiet_tools: frozenset[str] = QUIET_TOOLS,
        moderation: Optional[Callable[[Message], Awaitable[None]]] = None,
    ):
        self.chat = chat
        self.agent = agent
        self.chat_store = chat_store
        self.streamer = streamer
        self.quiet_tools = quiet_tools
        self.moderation = moderation
        self.status = TurnStatus.IDLE
        self.message: Optional[Message] = None
        self.finalized: list[Message] = []
        self.tools_used: list[str] = []
        self.content_buffer = StreamBuffer(settings.content_debounce, clock)
        self.thinking_buffer = StreamBuffer(settings.thinking_debounce, clock)

    async def handle(self, event: ChatEvent) -> None:
        if event.type == ChatEventType.NEW_MESSAGE:
            await self.on_new_message()
        elif event.type == ChatEventType.TEXT_DELTA:
            await self.on_content(event.content)
        elif event.type == ChatEventType.THINKING_DELTA:
            await self.on_thinking(event.content)
        elif event.type == ChatEventType.TOOL_CALL and event.tool_call:
            await self.on_tool_call(event.tool_call)
        elif event.type == ChatEventType.END_MESSAGE and event.response:
            await self.finalize(event.response)

    async def on_new_message(self) -> None:
        previous = self.message
        if previous is not None and previous.streaming:
            await self.flush_all()
            if not _blank(previous.content):
                await self._stop_streaming(previous)

        message = Message(
            chat_id=self.chat.id,
            role=MessageRole.ASSISTANT,
            agent_id=self.agent.id,
            author_name=self.agent.name,
            model_id=self.agent.model_id,
            streaming=True,
        )
        self.message = await self.chat_store.create_message(message)
        self.content_buffer.start()
        self.thinking_buffer.start()
        self.status = TurnStatus.STREAMING

    async def on_content(self, chunk: Optional[str]) -> None:
        if self.message is None:
            await self.on_new_message()
        self.content_buffer.enqueue(chunk)
        if self.content_buffer.should_flush():
            await self._flush_content()

    async def on_thinking(self, chunk: Optional[str]) -> None:
        if self.message is None:
            await self.on_new_message()
        self.thinking_buffer.enqueue(chunk)
        if self.thinking_buffer.should_flush():
            await self._flush_thinking()

    async def on_tool_call(self, call: ToolCall) -> None:
        label = tool_label(call)
        self.tools_used.append(label)
        if call.name in self.quiet_tools or self.message is None:
            return
        await self.streamer.publish(LiveUpdateType.TOOL_STATUS, self.message.id, label)

    async def finalize(self, response: ModelResponse) -> Optional[Message]:
        """Write the final state of the current model message.

        Tool-result messages are not ours to persist and are ignored.
        """
        if response.role == MessageRole.TOOL:
            return None
        message = self.message
        if message is None:
            logger.warning(f"Turn for agent {self.agent.id} ended a message it never started")
            return None

        self.status = TurnStatus.FINALIZING
        await self.flush_all()

        content = response.content
        if _blank(content):
            content = self.content_buffer.accumulated
        if _blank(content):
            persisted = await self.chat_store.get_message(message.id)
            content = persisted.content if persisted else ""
        if _blank(content) and not response.output_tokens:
            content = empty_response_notice(response)
            logger.warning(
                f"Empty response from {response.model_id or message.model_id} "
                f"for agent {self.agent.id}: finish_reason={response.finish_reason}"
            )

        message.content = content or ""
        message.reasoning = (
            response.reasoning or self.thinking_buffer.accumulated or message.reasoning
        )
        message.model_id = response.model_id or message.model_id
        message.input_tokens = response.input_tokens
        message.output_tokens = response.output_tokens
        message.tools_used = list(dict.fromkeys(self.tools_used))
        message.streaming = False
        await self.chat_store.update_message(message)
        await self.streamer.publish(LiveUpdateType.STREAMING_END, message.id)

        if message not in self.finalized:
            self.finalized.append(message)
            if self.moderation and not _blank(message.content):
                await self.moderation(message)
        return message

    async def flush_all(self) -> None:
        if self.content_buffer.pending:
            await self._flush_content()
        if self.thinking_buffer.pending:
            await self._flush_thinking()

    async def discard_partial(self) -> None:
        """Delete the streaming message if nothing was written to it."""
        message = self.message
        if message is None or not message.streaming:
            return
        if _blank(message.content) and _blank(self.content_buffer.accumulated):
            await self.chat_store.delete_message(message.id)
            self.message = None

    async def cleanup(self) -> None:
        """Force-flush and clear streaming state whatever happened."""
        if self.message is None:
            return
        await self.flush_all()
        if self.message.streaming:
            await self._stop_streaming(self.message)

    async def _flush_content(self) -> None:
        text = self.content_buffer.drain()
        if not text or self.message is None:
            return
        await self.chat_store.append_content(self.message.id, text)
        self.message.content = (self.message.content or "") + text
        await self.streamer.publish(LiveUpdateType.CONTENT, self.message.id, text)

    async def _flush_thinking(self) -> None:
        text = self.thinking_buffer.drain()
        if not text or self.message is None:
            return
        await self.chat_store.append_reasoning(self.message.id, text)
        self.message.reasoning = (self.message.reasoning or "") + text
        await self.streamer.publish(LiveUpdateType.THINKING, self.message.id, text)

    async def _stop_streaming(self, message: Message) -> None:
        message.streaming = False
        await self.chat_store.update_message(message)
        await self.streamer.publish(LiveUpdateType.STREAMING_END, message.id)


class ResponseOrchestrator:
    """Runs agent turns.

    Usage:
        orchestrator = ResponseOrchestrator(
            chat_store=chats,
            agent_store=agents,
            context_builder=context,
            selector=ProviderSelector(settings, registry),
            broadcaster=channel,
            task_queue=worker,
            registry=registry,
        )

        # Inline (raises on provider failure so the caller can retry)
        await orchestrator.run_turn(chat_id, agent_id)

        # Through the task queue with the per-error retry policy
        await orchestrator.schedule_turn(chat_id, agent_id)
    """

    def __init__(
        self,
        chat_store: IChatStore,
        agent_store: IAgentStore,
        context_builder: IContextBuilder,
        selector: ProviderSelector,
        broadcaster: IBroadcaster,
        task_queue: Optional[ITaskQueue] = None,
        registry: Optional[IModelRegistry] = None,
        settings: Optional[AgentSettings] = None,
        tool_registry: Optional[ToolRegistry] = None,
        moderation_hook: Optional[ModerationHook] = None,
        provider_factory: Optional[ProviderFactory] = None,
        quiet_tools: frozenset[str] = QUIET_TOOLS,
        clock: Optional[Clock] = None,
    ):
        self.chat_store = chat_store
        self.agent_store = agent_store
        self.context_builder = context_builder
        self.selector = selector
        self.broadcaster = broadcaster
        self.task_queue = task_queue
        self.registry = registry
        self.settings = settings or selector.settings
        self.tool_registry = tool_registry
        self.moderation_hook = moderation_hook
        self.provider_factory = provider_factory or selector.create_provider
        self.quiet_tools = quiet_tools
        self.clock = clock

    async def schedule_turn(
        self,
        chat_id: UUID,
        agent_id: UUID,
        initiation_reason: Optional[str] = None,
    ) -> Optional[UUID]:
        if self.task_queue is None:
            raise RuntimeError("No task queue configured for scheduled turns")
        return await self.task_queue.submit(
            self.run_turn,
            chat_id,
            agent_id,
            initiation_reason=initiation_reason,
            name=f"agent_turn:{agent_id}",
            retry_policy=TURN_RETRY_POLICY,
        )

    async def run_turn(
        self,
        chat_id: UUID,
        agent_id: UUID,
        initiation_reason: Optional[str] = None,
    ) -> Optional[ResponseTurn]:
        """Run one agent turn to completion.

        Returns:
            The finished turn, or None when the chat or agent is gone

        Raises:
            ProviderError: Retryable provider failures, after cleanup
        """
        chat = await self.chat_store.get_chat(chat_id)
        agent = await self.agent_store.get_agent(agent_id)
        if chat is None or agent is None:
            logger.warning(f"Skipping turn: chat {chat_id} or agent {agent_id} not found")
            return None

        streamer = EventStreamer(self.broadcaster, chat.id, correlation_id=str(uuid.uuid4()))
        turn = ResponseTurn(
            chat,
            agent,
            self.chat_store,
            streamer,
            self.settings,
            clock=self.clock,
            quiet_tools=self.quiet_tools,
            moderation=self._moderate if self.moderation_hook else None,
        )

        try:
            session, provider = await self._prepare(chat, agent, initiation_reason)
            turn.status = TurnStatus.AWAITING_FIRST_EVENT

            async for event in provider.stream(session):
                await turn.handle(event)

            turn.status = TurnStatus.SUCCEEDED
            logger.info(
                f"Agent {agent.name} finished turn in chat {chat.id} "
                f"({len(turn.finalized)} messages)"
            )
            return turn

        except MissingCapabilityError as e:
            turn.status = TurnStatus.FAILED
            logger.warning(f"Turn aborted for agent {agent.id}: {e}")
            await turn.discard_partial()
            await streamer.publish(LiveUpdateType.ERROR, content=e.message)
            return turn

        except ModelNotFoundError as e:
            turn.status = TurnStatus.FAILED
            logger.error(f"Model not found for agent {agent.id} ({agent.model_id}): {e}")
            await self._refresh_registry()
            await turn.discard_partial()
            raise

        except (BadRequestError, TransientProviderError) as e:
            turn.status = TurnStatus.FAILED
            logger.error(f"Provider error for agent {agent.id}: {e}")
            await turn.discard_partial()
            raise

        except Exception as e:
            turn.status = TurnStatus.FAILED
            logger.exception(f"Unexpected error in turn for agent {agent.id}: {e}")
            await turn.discard_partial()
            raise

        finally:
            await turn.cleanup()

    async def _prepare(
        self, chat: Chat, agent: Agent, initiation_reason: Optional[str]
    ) -> tuple[ModelSession, ILLMProvider]:
        if agent.thinking_enabled:
            self.selector.require_thinking_capability(agent.model_id)

        route = self.selector.select(agent.model_id)
        messages = await self.context_builder.build_context(chat, agent, initiation_reason)
        tools = self.tool_registry.tools_for(agent, chat) if self.tool_registry else []

        session = self.selector.create_session(
            route,
            messages=messages,
            system_prompt=agent.system_prompt,
            tools=tools,
        )
        if agent.thinking_enabled:
            self.selector.configure_thinking(session, agent.thinking_budget, route.provider)

        logger.debug(f"Agent {agent.id} routed to {route.provider}:{route.model_id}")
        return session, self.provider_factory(route)

    async def _refresh_registry(self) -> None:
        if self.registry is None:
            return
        try:
            await self.registry.refresh()
        except Exception as e:
            logger.warning(f"Model registry refresh failed: {e}")

    async def _moderate(self, message: Message) -> None:
        if self.task_queue is not None:
            await self.task_queue.submit(
                self.moderation_hook, message, name=f"moderate:{message.id}"
            )
        else:
            await self.moderation_hook(message)
