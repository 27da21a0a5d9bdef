"""
Tests for domain entities.

Covers:
- One-way memory transitions
- Journal expiry
- Session thinking configuration
- Live update serialization
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from helix.agent.domain.entities import (
    AgentMemory,
    Chat,
    LiveUpdate,
    LiveUpdateType,
    MemoryType,
    Message,
    MessageRole,
    ModelSession,
    estimate_tokens,
    utcnow,
)
from helix.agent.exceptions import UnsupportedFeatureError


class TestAgentMemory:
    def test_promote_moves_journal_to_core(self):
        memory = AgentMemory(agent_id=uuid4(), memory_type=MemoryType.JOURNAL, content="x")
        memory.promote()
        assert memory.memory_type == MemoryType.CORE

    def test_core_never_returns_to_journal(self):
        memory = AgentMemory(agent_id=uuid4(), memory_type=MemoryType.CORE, content="x")
        memory.promote()
        memory.promote()
        assert memory.memory_type == MemoryType.CORE

    def test_protect_is_permanent(self):
        memory = AgentMemory(agent_id=uuid4(), memory_type=MemoryType.CORE, content="x")
        memory.protect()
        memory.protect()
        assert memory.constitutional is True

    def test_journal_expires_after_window(self):
        now = utcnow()
        old = AgentMemory(
            agent_id=uuid4(),
            memory_type=MemoryType.JOURNAL,
            content="x",
            created_at=now - timedelta(days=8),
        )
        fresh = AgentMemory(agent_id=uuid4(), memory_type=MemoryType.JOURNAL, content="y")

        assert old.is_expired(now, timedelta(days=7))
        assert not fresh.is_expired(now, timedelta(days=7))

    def test_core_never_expires(self):
        now = utcnow()
        memory = AgentMemory(
            agent_id=uuid4(),
            memory_type=MemoryType.CORE,
            content="x",
            created_at=now - timedelta(days=400),
        )
        assert not memory.is_expired(now, timedelta(days=7))

    def test_token_estimate(self):
        memory = AgentMemory(agent_id=uuid4(), memory_type=MemoryType.CORE, content="a" * 400)
        assert memory.token_estimate == 100
        assert estimate_tokens(None) == 0


class TestChatAndMessage:
    def test_group_chat_and_respondable(self):
        chat = Chat(account_id="a", manual_responses=True)
        assert chat.is_group_chat
        assert chat.is_respondable

        chat.archived_at = utcnow()
        assert not chat.is_respondable

    def test_transcript_line_uses_author_name(self):
        message = Message(chat_id=uuid4(), role=MessageRole.USER, content="hi", author_name="Sam")
        assert message.transcript_line() == "[Sam]: hi"

    def test_transcript_line_falls_back_to_role(self):
        message = Message(chat_id=uuid4(), role=MessageRole.USER, content="hi")
        assert message.transcript_line() == "[User]: hi"


class TestModelSession:
    def test_with_thinking_requires_structured_support(self):
        session = ModelSession(model_id="m", provider="openrouter")
        with pytest.raises(UnsupportedFeatureError):
            session.with_thinking(4000)

    def test_with_thinking_sets_budget(self):
        session = ModelSession(model_id="m", provider="anthropic", structured_thinking=True)
        session.with_thinking(4000)
        assert session.thinking == {"budget_tokens": 4000}

    def test_with_params_merges(self):
        session = ModelSession(model_id="m", provider="openai")
        session.with_params(a=1).with_params(b=2)
        assert session.params == {"a": 1, "b": 2}


class TestLiveUpdate:
    def test_to_dict_omits_unset_fields(self):
        chat_id = uuid4()
        update = LiveUpdate(type=LiveUpdateType.STREAMING_END, chat_id=chat_id, sequence=3)
        data = update.to_dict()

        assert data["type"] == "streaming_end"
        assert data["chat_id"] == str(chat_id)
        assert data["sequence"] == 3
        assert "content" not in data
        assert "message_id" not in data
