"""
Shared fixtures for agent core tests.

In-memory implementations of the persistence and delivery ports. Stores
keep copies of what they are given, the way a database would, so a test
only sees what was actually written through the port.
"""

import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

import pytest

from helix.agent.config import AgentSettings
from helix.agent.domain.entities import (
    Agent,
    AgentMemory,
    AuditEntry,
    Chat,
    HumanActivity,
    MemoryType,
    Message,
    MessageRole,
)
from helix.agent.domain.ports import (
    IAgentStore,
    IAuditLog,
    IBroadcaster,
    IChatStore,
    IContextBuilder,
    IMemoryStore,
    INotifier,
    ITaskQueue,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _copy(obj):
    return dataclasses.replace(obj) if obj is not None else None


# ============================================
# Stores
# ============================================


class InMemoryChatStore(IChatStore):
    def __init__(self):
        self.chats: dict[UUID, Chat] = {}
        self.messages: dict[UUID, Message] = {}
        self.content_writes: list[tuple[UUID, str]] = []
        self.reasoning_writes: list[tuple[UUID, str]] = []
        self.deleted: list[UUID] = []

    async def get_chat(self, chat_id):
        return _copy(self.chats.get(chat_id))

    async def find_chat(self, account_id, reference):
        try:
            chat_id = UUID(str(reference))
        except ValueError:
            return None
        chat = self.chats.get(chat_id)
        if chat is None or chat.account_id != account_id:
            return None
        return _copy(chat)

    async def create_chat(self, chat):
        self.chats[chat.id] = _copy(chat)
        return chat

    async def update_chat(self, chat):
        self.chats[chat.id] = _copy(chat)

    async def get_message(self, message_id):
        return _copy(self.messages.get(message_id))

    async def create_message(self, message):
        self.messages[message.id] = _copy(message)
        return message

    async def update_message(self, message):
        self.messages[message.id] = _copy(message)

    async def append_content(self, message_id, text):
        self.content_writes.append((message_id, text))
        stored = self.messages[message_id]
        stored.content = (stored.content or "") + text

    async def append_reasoning(self, message_id, text):
        self.reasoning_writes.append((message_id, text))
        stored = self.messages[message_id]
        stored.reasoning = (stored.reasoning or "") + text

    async def delete_message(self, message_id):
        self.deleted.append(message_id)
        self.messages.pop(message_id, None)

    def _chat_messages(self, chat_id) -> list[Message]:
        # Insertion order breaks timestamp ties
        ordered = [m for m in self.messages.values() if m.chat_id == chat_id]
        return sorted(ordered, key=lambda m: m.created_at)

    async def list_messages_after(self, chat_id, after_message_id):
        messages = self._chat_messages(chat_id)
        if after_message_id is None:
            return [_copy(m) for m in messages]
        ids = [m.id for m in messages]
        if after_message_id not in ids:
            return [_copy(m) for m in messages]
        return [_copy(m) for m in messages[ids.index(after_message_id) + 1:]]

    async def get_latest_message(self, chat_id):
        messages = self._chat_messages(chat_id)
        return _copy(messages[-1]) if messages else None

    async def list_stale_group_chats(self, idle_since):
        stale = []
        for chat in self.chats.values():
            if not chat.is_group_chat or chat.discarded_at:
                continue
            messages = self._chat_messages(chat.id)
            if not messages or messages[-1].created_at > idle_since:
                continue
            if messages[-1].id == chat.last_consolidated_message_id:
                continue
            stale.append(_copy(chat))
        return stale

    async def list_continuable_chats(self, agent_id, limit=10):
        result = []
        for chat in self.chats.values():
            if not chat.is_group_chat or not chat.is_respondable:
                continue
            if agent_id not in chat.agent_ids:
                continue
            messages = self._chat_messages(chat.id)
            if messages and messages[-1].agent_id == agent_id:
                continue
            result.append(_copy(chat))
        return result[:limit]

    async def list_initiated_chats(self, account_id, since):
        return [
            _copy(c)
            for c in self.chats.values()
            if c.account_id == account_id and c.initiated_by_agent_id and c.created_at >= since
        ]

    async def count_pending_initiations(self, agent_id):
        pending = 0
        for chat in self.chats.values():
            if chat.initiated_by_agent_id != agent_id or chat.discarded_at:
                continue
            if not any(m.is_human for m in self._chat_messages(chat.id)):
                pending += 1
        return pending

    async def human_activity_since(self, account_id, since):
        latest: dict[str, Message] = {}
        for m in self.messages.values():
            chat = self.chats.get(m.chat_id)
            if not m.is_human or chat is None or chat.account_id != account_id:
                continue
            if m.created_at < since:
                continue
            key = m.user_id or m.author_name or "unknown"
            if key not in latest or m.created_at > latest[key].created_at:
                latest[key] = m
        activity = [
            HumanActivity(name=m.author_name or key, last_active_at=m.created_at)
            for key, m in latest.items()
        ]
        return sorted(activity, key=lambda a: a.last_active_at, reverse=True)

    async def accounts_with_human_messages_since(self, since):
        return {
            self.chats[m.chat_id].account_id
            for m in self.messages.values()
            if m.is_human and m.created_at >= since and m.chat_id in self.chats
        }

    # Test helpers

    def add_chat(self, chat: Chat) -> Chat:
        self.chats[chat.id] = chat
        return chat

    def add_message(self, message: Message) -> Message:
        self.messages[message.id] = message
        return message

    def chat_messages(self, chat_id) -> list[Message]:
        return self._chat_messages(chat_id)


class InMemoryAgentStore(IAgentStore):
    def __init__(self):
        self.agents: dict[UUID, Agent] = {}

    async def get_agent(self, agent_id):
        return _copy(self.agents.get(agent_id))

    async def list_active_agents(self, account_ids=None):
        return [
            _copy(a)
            for a in self.agents.values()
            if a.active and (account_ids is None or a.account_id in account_ids)
        ]

    async def update_agent(self, agent):
        self.agents[agent.id] = _copy(agent)

    def add(self, agent: Agent) -> Agent:
        self.agents[agent.id] = agent
        return agent


class InMemoryMemoryStore(IMemoryStore):
    def __init__(self):
        self.memories: dict[UUID, AgentMemory] = {}

    async def create_memory(self, memory):
        self.memories[memory.id] = _copy(memory)
        return memory

    async def get_memory(self, memory_id):
        return _copy(self.memories.get(memory_id))

    async def update_memory(self, memory):
        self.memories[memory.id] = _copy(memory)

    def _live(self, agent_id, memory_type):
        return sorted(
            (
                m
                for m in self.memories.values()
                if m.agent_id == agent_id and m.memory_type == memory_type and not m.is_discarded
            ),
            key=lambda m: m.created_at,
        )

    async def list_core(self, agent_id):
        return [_copy(m) for m in self._live(agent_id, MemoryType.CORE)]

    async def list_journal(self, agent_id, since):
        return [_copy(m) for m in self._live(agent_id, MemoryType.JOURNAL) if m.created_at >= since]

    async def search_core(self, agent_id, query):
        query = query.lower()
        return [_copy(m) for m in self._live(agent_id, MemoryType.CORE) if query in m.content.lower()]

    async def agents_with_journal_since(self, since):
        ids = []
        for m in self.memories.values():
            if m.memory_type == MemoryType.JOURNAL and not m.is_discarded and m.created_at >= since:
                if m.agent_id not in ids:
                    ids.append(m.agent_id)
        return ids

    # Test helpers

    def add(self, agent_id, content, memory_type=MemoryType.CORE, **kwargs) -> AgentMemory:
        memory = AgentMemory(agent_id=agent_id, memory_type=memory_type, content=content, **kwargs)
        self.memories[memory.id] = memory
        return memory

    def of(self, agent_id, memory_type=None, include_discarded=False) -> list[AgentMemory]:
        return [
            m
            for m in self.memories.values()
            if m.agent_id == agent_id
            and (memory_type is None or m.memory_type == memory_type)
            and (include_discarded or not m.is_discarded)
        ]


class InMemoryAuditLog(IAuditLog):
    def __init__(self):
        self.entries: list[AuditEntry] = []

    async def record(self, entry):
        self.entries.append(entry)

    async def accounts_with_activity_since(self, since):
        return {e.account_id for e in self.entries if e.created_at >= since}

    def actions(self) -> list[str]:
        return [e.action for e in self.entries]

    def find(self, action) -> Optional[AuditEntry]:
        return next((e for e in self.entries if e.action == action), None)


# ============================================
# Delivery
# ============================================


class RecordingBroadcaster(IBroadcaster):
    def __init__(self):
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def broadcast(self, channel, payload):
        self.sent.append((channel, payload))

    def types(self) -> list[str]:
        return [payload["type"] for _, payload in self.sent]


class RecordingNotifier(INotifier):
    def __init__(self):
        self.notices: list[tuple[UUID, str]] = []

    async def notify(self, agent, text):
        self.notices.append((agent.id, text))


class RecordingTaskQueue(ITaskQueue):
    """Task queue that records submissions and runs them on demand."""

    def __init__(self):
        self.submitted: list[dict[str, Any]] = []

    async def submit(self, coro_func, *args, name="", delay=None, retry_policy=None, **kwargs):
        task_id = uuid4()
        self.submitted.append(
            {
                "id": task_id,
                "func": coro_func,
                "args": args,
                "kwargs": kwargs,
                "name": name,
                "delay": delay,
                "retry_policy": retry_policy,
            }
        )
        return task_id

    async def run_next(self):
        task = self.submitted.pop(0)
        return await task["func"](*task["args"], **task["kwargs"])

    def names(self) -> list[str]:
        return [t["name"] for t in self.submitted]


class TranscriptContextBuilder(IContextBuilder):
    """Builds context straight from the chat store's persisted messages."""

    def __init__(self, chat_store: InMemoryChatStore):
        self.chat_store = chat_store
        self.calls: list[dict[str, Any]] = []

    async def build_context(self, chat, agent, initiation_reason=None):
        messages = [
            {
                "role": "user" if m.role == MessageRole.USER else "assistant",
                "content": m.transcript_line() if m.agent_id != agent.id else m.content,
            }
            for m in self.chat_store.chat_messages(chat.id)
            if not m.streaming
        ]
        self.calls.append(
            {"agent_id": agent.id, "messages": messages, "initiation_reason": initiation_reason}
        )
        return messages


# ============================================
# Fixtures
# ============================================


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def settings():
    return AgentSettings(
        anthropic_api_key=None,
        openai_api_key=None,
        openrouter_api_key="sk-or-test",
    )


@pytest.fixture
def chat_store():
    return InMemoryChatStore()


@pytest.fixture
def agent_store():
    return InMemoryAgentStore()


@pytest.fixture
def memory_store():
    return InMemoryMemoryStore()


@pytest.fixture
def audit_log():
    return InMemoryAuditLog()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def task_queue():
    return RecordingTaskQueue()


@pytest.fixture
def context_builder(chat_store):
    return TranscriptContextBuilder(chat_store)


@pytest.fixture
def agent(agent_store):
    return agent_store.add(
        Agent(
            account_id="acct-1",
            name="Ada",
            model_id="anthropic/claude-sonnet-4.5",
            system_prompt="You are Ada, a careful research assistant.",
        )
    )


@pytest.fixture
def other_agent(agent_store):
    return agent_store.add(
        Agent(
            account_id="acct-1",
            name="Brook",
            model_id="openai/gpt-5",
            system_prompt="You are Brook.",
        )
    )


@pytest.fixture
def group_chat(chat_store, agent, other_agent):
    return chat_store.add_chat(
        Chat(
            account_id="acct-1",
            title="Planning",
            manual_responses=True,
            agent_ids=[agent.id, other_agent.id],
            created_at=NOW - timedelta(days=2),
        )
    )


def human_message(chat, content, at, name="Sam", user_id="user-1"):
    return Message(
        chat_id=chat.id,
        role=MessageRole.USER,
        content=content,
        user_id=user_id,
        author_name=name,
        created_at=at,
    )


def agent_message(chat, agent, content, at):
    return Message(
        chat_id=chat.id,
        role=MessageRole.ASSISTANT,
        content=content,
        agent_id=agent.id,
        author_name=agent.name,
        created_at=at,
    )
