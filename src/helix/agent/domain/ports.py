"""
Port interfaces (abstract base classes) for the agent core.

These define the contracts that adapters must implement.
Following the Ports & Adapters (Hexagonal) architecture pattern.
Persistence, broadcast transport and the task backend live outside this
package; the orchestrator and sweeps only ever talk to these ports.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Optional
from uuid import UUID

if TYPE_CHECKING:
    from ..resilience import RetryPolicy
    from .entities import (
        Agent,
        AgentMemory,
        AuditEntry,
        Chat,
        ChatEvent,
        HumanActivity,
        Message,
        ModelResponse,
        ModelSession,
    )


# ============================================
# LLM Provider Interface
# ============================================


class ILLMProvider(ABC):
    """Interface for model endpoints.

    Implementations translate a ModelSession into the vendor API and
    translate the vendor stream back into ChatEvents.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider slug (e.g., 'anthropic', 'openrouter')."""
        pass

    @abstractmethod
    def stream(self, session: ModelSession) -> AsyncIterator[ChatEvent]:
        """Run one agent turn, tool rounds included.

        Yields:
            ChatEvent objects in the order the provider produced them

        Raises:
            ProviderError subclasses classified from the vendor error
        """
        pass

    async def complete(self, session: ModelSession) -> ModelResponse:
        """Run a turn and return only the final assistant response.

        Convenience wrapper around stream() used by the memory sweeps and
        the initiation engine, which have no live audience.
        """
        from .entities import ChatEventType, MessageRole, ModelResponse

        final: Optional[ModelResponse] = None
        async for event in self.stream(session):
            if event.type == ChatEventType.END_MESSAGE and event.response:
                if event.response.role == MessageRole.ASSISTANT:
                    final = event.response
        return final or ModelResponse()


class IModelRegistry(ABC):
    """Catalogue of known models and their provider-native ids."""

    @abstractmethod
    def resolve(self, model_id: str) -> Optional[str]:
        """Return the provider-native id for a logical model id."""
        pass

    @abstractmethod
    async def refresh(self) -> None:
        """Reload the catalogue from its source."""
        pass


# ============================================
# Persistence Interfaces
# ============================================


class IChatStore(ABC):
    """Interface for chat and message persistence."""

    @abstractmethod
    async def get_chat(self, chat_id: UUID) -> Optional[Chat]:
        pass

    @abstractmethod
    async def find_chat(self, account_id: str, reference: str) -> Optional[Chat]:
        """Resolve an opaque conversation reference within an account."""
        pass

    @abstractmethod
    async def create_chat(self, chat: Chat) -> Chat:
        pass

    @abstractmethod
    async def update_chat(self, chat: Chat) -> None:
        pass

    @abstractmethod
    async def get_message(self, message_id: UUID) -> Optional[Message]:
        pass

    @abstractmethod
    async def create_message(self, message: Message) -> Message:
        pass

    @abstractmethod
    async def update_message(self, message: Message) -> None:
        pass

    @abstractmethod
    async def append_content(self, message_id: UUID, text: str) -> None:
        """Append streamed reply text to a persisted message."""
        pass

    @abstractmethod
    async def append_reasoning(self, message_id: UUID, text: str) -> None:
        """Append streamed reasoning text to a persisted message."""
        pass

    @abstractmethod
    async def delete_message(self, message_id: UUID) -> None:
        pass

    @abstractmethod
    async def list_messages_after(
        self, chat_id: UUID, after_message_id: Optional[UUID]
    ) -> list[Message]:
        """Messages after the given one, ordered by (created_at, id).

        All messages when after_message_id is None.
        """
        pass

    @abstractmethod
    async def get_latest_message(self, chat_id: UUID) -> Optional[Message]:
        """Newest message of the chat by (created_at, id), or None when empty."""
        pass

    @abstractmethod
    async def list_stale_group_chats(self, idle_since: datetime) -> list[Chat]:
        """Group chats with no message since idle_since that hold
        messages past their consolidation watermark."""
        pass

    @abstractmethod
    async def list_continuable_chats(self, agent_id: UUID, limit: int = 10) -> list[Chat]:
        """Active group chats the agent belongs to where it did not speak last."""
        pass

    @abstractmethod
    async def list_initiated_chats(self, account_id: str, since: datetime) -> list[Chat]:
        """Chats opened by any agent of the account since the given time."""
        pass

    @abstractmethod
    async def count_pending_initiations(self, agent_id: UUID) -> int:
        """Chats opened by the agent that no human has answered yet."""
        pass

    @abstractmethod
    async def human_activity_since(
        self, account_id: str, since: datetime
    ) -> list[HumanActivity]:
        """Latest message time per human user of the account, newest first."""
        pass

    @abstractmethod
    async def accounts_with_human_messages_since(self, since: datetime) -> set[str]:
        pass


class IAgentStore(ABC):
    """Interface for agent persistence."""

    @abstractmethod
    async def get_agent(self, agent_id: UUID) -> Optional[Agent]:
        pass

    @abstractmethod
    async def list_active_agents(
        self, account_ids: Optional[set[str]] = None
    ) -> list[Agent]:
        """Active agents, optionally limited to the given accounts."""
        pass

    @abstractmethod
    async def update_agent(self, agent: Agent) -> None:
        pass


class IMemoryStore(ABC):
    """Interface for agent memory persistence.

    Discarded memories are excluded from every list unless asked for.
    """

    @abstractmethod
    async def create_memory(self, memory: AgentMemory) -> AgentMemory:
        pass

    @abstractmethod
    async def get_memory(self, memory_id: UUID) -> Optional[AgentMemory]:
        pass

    @abstractmethod
    async def update_memory(self, memory: AgentMemory) -> None:
        pass

    @abstractmethod
    async def list_core(self, agent_id: UUID) -> list[AgentMemory]:
        """Live core memories ordered by created_at."""
        pass

    @abstractmethod
    async def list_journal(self, agent_id: UUID, since: datetime) -> list[AgentMemory]:
        """Live journal memories created after ``since``, oldest first."""
        pass

    @abstractmethod
    async def search_core(self, agent_id: UUID, query: str) -> list[AgentMemory]:
        pass

    @abstractmethod
    async def agents_with_journal_since(self, since: datetime) -> list[UUID]:
        pass


class IAuditLog(ABC):
    """Append-only audit sink."""

    @abstractmethod
    async def record(self, entry: AuditEntry) -> None:
        pass

    @abstractmethod
    async def accounts_with_activity_since(self, since: datetime) -> set[str]:
        pass


# ============================================
# Delivery Interfaces
# ============================================


class IBroadcaster(ABC):
    """Live update channel to connected clients."""

    @abstractmethod
    async def broadcast(self, channel: str, payload: dict[str, Any]) -> None:
        pass


class INotifier(ABC):
    """Low-priority out-of-band notices about agent activity."""

    @abstractmethod
    async def notify(self, agent: Agent, text: str) -> None:
        pass


class ITaskQueue(ABC):
    """Background task submission with delays and retry policies."""

    @abstractmethod
    async def submit(
        self,
        coro_func: Callable[..., Awaitable[Any]],
        *args: Any,
        name: str = "",
        delay: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ) -> Optional[UUID]:
        pass


class IContextBuilder(ABC):
    """Builds the model-facing conversation for an agent turn."""

    @abstractmethod
    async def build_context(
        self,
        chat: Chat,
        agent: Agent,
        initiation_reason: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Return role/content dicts, oldest first."""
        pass
