"""
Domain entities for the agent core.

These are pure domain objects with no infrastructure dependencies.
They define the core data structures used throughout the agent module.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from ..exceptions import UnsupportedFeatureError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token count used for budgets and chunking."""
    return len(text or "") // 4


# ============================================
# Chats and Messages
# ============================================


class MessageRole(str, Enum):
    """Role of a message in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


@dataclass
class Chat:
    """A conversation thread shared by humans and agents.

    Attributes:
        account_id: Owning account
        title: Display title
        manual_responses: True for group chats where agents are triggered
            explicitly rather than answering every message
        agent_ids: Agents participating in the chat
        archived_at: Set when the chat is archived
        discarded_at: Set when the chat is soft-deleted
        last_consolidated_at: When memory consolidation last ran
        last_consolidated_message_id: Consolidation watermark
        initiated_by_agent_id: Agent that opened the chat, if any
        initiation_reason: Why the agent opened the chat
    """

    account_id: str
    id: Optional[uuid.UUID] = None
    title: Optional[str] = None
    manual_responses: bool = False
    agent_ids: list[uuid.UUID] = field(default_factory=list)
    archived_at: Optional[datetime] = None
    discarded_at: Optional[datetime] = None
    last_consolidated_at: Optional[datetime] = None
    last_consolidated_message_id: Optional[uuid.UUID] = None
    initiated_by_agent_id: Optional[uuid.UUID] = None
    initiation_reason: Optional[str] = None
    summary: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.id is None:
            self.id = uuid.uuid4()
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_group_chat(self) -> bool:
        return self.manual_responses

    @property
    def is_respondable(self) -> bool:
        """Whether agents may still post into this chat."""
        return self.archived_at is None and self.discarded_at is None


@dataclass
class Message:
    """A single message in a chat.

    Attributes:
        chat_id: Parent chat
        role: Message role (user, assistant, system, tool)
        content: Message text
        reasoning: Extended reasoning text streamed alongside the reply
        agent_id: Authoring agent for assistant messages
        user_id: Authoring human for user messages
        author_name: Display name used in transcripts
        model_id: Model that produced the message
        input_tokens: Prompt tokens reported by the provider
        output_tokens: Completion tokens reported by the provider
        tools_used: Tool names or URLs used while producing the message
        streaming: True while the message is being streamed
    """

    chat_id: uuid.UUID
    role: MessageRole
    content: str = ""
    id: Optional[uuid.UUID] = None
    reasoning: Optional[str] = None
    agent_id: Optional[uuid.UUID] = None
    user_id: Optional[str] = None
    author_name: Optional[str] = None
    model_id: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    tools_used: list[str] = field(default_factory=list)
    streaming: bool = False
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.id is None:
            self.id = uuid.uuid4()
        if self.created_at is None:
            self.created_at = utcnow()

    @property
    def is_human(self) -> bool:
        return self.role == MessageRole.USER and self.agent_id is None

    def transcript_line(self) -> str:
        """Render as ``[Name]: content`` for extraction prompts."""
        name = self.author_name or ("User" if self.role == MessageRole.USER else "Assistant")
        return f"[{name}]: {self.content}"


@dataclass(frozen=True)
class HumanActivity:
    """When a human user of an account last wrote in any of its chats."""

    name: str
    last_active_at: datetime


# ============================================
# Agents
# ============================================


@dataclass
class Agent:
    """An AI participant with its own identity and memory.

    Attributes:
        account_id: Owning account
        name: Display name
        system_prompt: Identity instructions
        model_id: Logical model id (e.g. "anthropic/claude-sonnet-4.5")
        thinking_budget: Reasoning token budget, None when disabled
        enabled_tools: Names of tools the agent may call
        initiation_cap: Pending self-initiated chats allowed at once; None
            uses the configured default and 0 disables initiation
        last_refinement_at: When core memories were last refined
        active: Inactive agents are skipped by every sweep
        extraction_prompt: Optional override for consolidation extraction
        refinement_prompt: Optional extra guidance for refinement
        refinement_threshold: Fraction of core memory mass that must survive
            a refinement session
    """

    account_id: str
    name: str
    model_id: str
    id: Optional[uuid.UUID] = None
    system_prompt: str = ""
    thinking_budget: Optional[int] = None
    enabled_tools: list[str] = field(default_factory=list)
    initiation_cap: Optional[int] = None
    last_refinement_at: Optional[datetime] = None
    active: bool = True
    extraction_prompt: Optional[str] = None
    refinement_prompt: Optional[str] = None
    refinement_threshold: float = 0.9

    def __post_init__(self):
        if self.id is None:
            self.id = uuid.uuid4()

    @property
    def thinking_enabled(self) -> bool:
        return bool(self.thinking_budget)


# ============================================
# Agent Memory
# ============================================


class MemoryType(str, Enum):
    """Kind of agent memory."""

    JOURNAL = "journal"  # Short-lived, expires after the journal window
    CORE = "core"  # Long-lived, feeds the agent's identity


@dataclass
class AgentMemory:
    """A single memory owned by an agent.

    Transitions are one-way: ``promote`` moves journal to core and
    ``protect`` sets the constitutional flag. Neither can be undone.
    """

    agent_id: uuid.UUID
    memory_type: MemoryType
    content: str
    id: Optional[uuid.UUID] = None
    constitutional: bool = False
    created_at: Optional[datetime] = None
    discarded_at: Optional[datetime] = None

    def __post_init__(self):
        if self.id is None:
            self.id = uuid.uuid4()
        if self.created_at is None:
            self.created_at = utcnow()

    @property
    def token_estimate(self) -> int:
        return estimate_tokens(self.content)

    @property
    def is_core(self) -> bool:
        return self.memory_type == MemoryType.CORE

    @property
    def is_discarded(self) -> bool:
        return self.discarded_at is not None

    def is_expired(self, now: datetime, window: timedelta) -> bool:
        """Journal entries fall out of view after the window; core never does."""
        if self.memory_type != MemoryType.JOURNAL:
            return False
        return self.created_at < now - window

    def promote(self) -> None:
        if self.memory_type == MemoryType.JOURNAL:
            self.memory_type = MemoryType.CORE

    def protect(self) -> None:
        self.constitutional = True


# ============================================
# Audit
# ============================================


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of a decision or outcome."""

    account_id: str
    action: str
    agent_id: Optional[uuid.UUID] = None
    data: dict[str, Any] = field(default_factory=dict)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=utcnow)


# ============================================
# Tool System
# ============================================


@dataclass
class ToolDefinition:
    """Definition of an available tool.

    Attributes:
        name: Tool name (e.g., 'web_fetch')
        description: Human-readable description
        parameters: JSON Schema for parameters
    """

    name: str
    description: str
    parameters: dict[str, Any]

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic_format(self) -> dict[str, Any]:
        """Convert to Anthropic tool use format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


@dataclass
class ToolCall:
    """A tool call made by the model.

    Attributes:
        id: Tool call identifier (for correlation)
        name: Tool name being called
        arguments: Arguments passed to the tool
        result: Result from tool execution (set after execution)
    """

    name: str
    arguments: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    result: Optional[Any] = None


# ============================================
# Model Responses and Stream Events
# ============================================


@dataclass
class ModelResponse:
    """Terminal payload of one streamed model message.

    Attributes:
        role: ASSISTANT for replies, TOOL for tool-result messages
        content: Final text as reported by the provider
        reasoning: Final reasoning text, if any
        model_id: Model that answered
        input_tokens: Prompt tokens
        output_tokens: Completion tokens
        finish_reason: Provider stop/finish reason
        raw: Raw provider payload, inspected for safety signals
        tool_calls: Calls requested in this message
    """

    role: MessageRole = MessageRole.ASSISTANT
    content: Optional[str] = None
    reasoning: Optional[str] = None
    model_id: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: Optional[str] = None
    raw: Optional[dict[str, Any]] = None
    tool_calls: list[ToolCall] = field(default_factory=list)


class ChatEventType(str, Enum):
    """Events emitted by a provider during one agent turn."""

    NEW_MESSAGE = "new_message"  # A model message begins
    TEXT_DELTA = "text_delta"  # Partial reply text
    THINKING_DELTA = "thinking_delta"  # Partial reasoning text
    TOOL_CALL = "tool_call"  # Model requested a tool
    END_MESSAGE = "end_message"  # Message complete, carries ModelResponse


@dataclass
class ChatEvent:
    """A streaming event from the provider.

    Attributes:
        type: Event type
        sequence: Sequence number for ordering
        content: Text for delta events
        tool_call: Requested call for TOOL_CALL events
        response: Terminal payload for END_MESSAGE events
    """

    type: ChatEventType
    sequence: int
    content: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    response: Optional[ModelResponse] = None

    @classmethod
    def new_message(cls, sequence: int) -> ChatEvent:
        return cls(type=ChatEventType.NEW_MESSAGE, sequence=sequence)

    @classmethod
    def text_delta(cls, text: Optional[str], sequence: int) -> ChatEvent:
        return cls(type=ChatEventType.TEXT_DELTA, sequence=sequence, content=text)

    @classmethod
    def thinking_delta(cls, text: Optional[str], sequence: int) -> ChatEvent:
        return cls(type=ChatEventType.THINKING_DELTA, sequence=sequence, content=text)

    @classmethod
    def tool(cls, call: ToolCall, sequence: int) -> ChatEvent:
        return cls(type=ChatEventType.TOOL_CALL, sequence=sequence, tool_call=call)

    @classmethod
    def end_message(cls, response: ModelResponse, sequence: int) -> ChatEvent:
        return cls(type=ChatEventType.END_MESSAGE, sequence=sequence, response=response)


class LiveUpdateType(str, Enum):
    """Updates pushed to subscribers of a chat's live channel."""

    CONTENT = "streaming_update"
    THINKING = "thinking_update"
    TOOL_STATUS = "tool_status"
    STREAMING_END = "streaming_end"
    ERROR = "error"


@dataclass
class LiveUpdate:
    """A broadcast payload for one chat."""

    type: LiveUpdateType
    chat_id: uuid.UUID
    sequence: int
    message_id: Optional[uuid.UUID] = None
    content: Optional[str] = None
    correlation_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.type.value,
            "chat_id": str(self.chat_id),
            "sequence": self.sequence,
            "event_id": self.event_id,
        }
        if self.message_id is not None:
            result["message_id"] = str(self.message_id)
        if self.content is not None:
            result["content"] = self.content
        if self.correlation_id is not None:
            result["correlation_id"] = self.correlation_id
        return result


# ============================================
# Model Session
# ============================================


@dataclass
class ModelSession:
    """Everything needed to send one turn to a provider.

    Attributes:
        model_id: Provider-native model id
        provider: Provider slug ("anthropic", "openai", "openrouter")
        messages: Conversation context as role/content dicts
        system_prompt: System instructions
        tools: Tool objects the model may call
        thinking: Structured reasoning settings, if accepted
        params: Raw provider parameters merged into the request
        structured_thinking: Whether the integration accepts ``with_thinking``
        max_tokens: Completion ceiling unless overridden in params
    """

    model_id: str
    provider: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    system_prompt: Optional[str] = None
    tools: list[Any] = field(default_factory=list)
    thinking: Optional[dict[str, Any]] = None
    params: dict[str, Any] = field(default_factory=dict)
    structured_thinking: bool = False
    max_tokens: int = 4096

    def with_thinking(self, budget: int) -> ModelSession:
        """Enable reasoning through the integration's own budget setting."""
        if not self.structured_thinking:
            raise UnsupportedFeatureError(
                f"Structured thinking is not supported for {self.provider}",
                feature="thinking",
                provider=self.provider,
                model_id=self.model_id,
            )
        self.thinking = {"budget_tokens": budget}
        return self

    def with_params(self, **params: Any) -> ModelSession:
        self.params.update(params)
        return self
