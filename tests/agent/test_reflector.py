"""
Tests for memory reflection.

Covers:
- Promotion index parsing
- Journal to core promotion with out-of-range and duplicate indices
- Reflection prompt contents
- Sweep eligibility and per-agent failure isolation
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import NOW
from helix.agent.domain.entities import MemoryType, ModelResponse
from helix.agent.memory import Reflector, parse_promotions


@pytest.fixture
def selector():
    selector = MagicMock()
    selector.ask = AsyncMock(return_value=ModelResponse(content='{"promote": []}'))
    return selector


@pytest.fixture
def reflector(agent_store, memory_store, selector, settings, clock):
    return Reflector(agent_store, memory_store, selector, settings, clock)


@pytest.fixture
def journal(memory_store, agent):
    return [
        memory_store.add(agent.id, content, MemoryType.JOURNAL, created_at=NOW - timedelta(days=d))
        for d, content in [(3, "Sam prefers short answers"), (2, "Sam had lunch"), (1, "Sam trusts me with drafts")]
    ]


class TestParsePromotions:
    def test_reads_indices(self):
        assert parse_promotions('{"promote": [1, 3]}') == [1, 3]

    def test_coerces_numeric_strings_and_skips_junk(self):
        assert parse_promotions('{"promote": ["2", "x", null, 0, 4.0]}') == [2, 4]

    def test_empty_and_malformed(self):
        assert parse_promotions('{"promote": []}') == []
        assert parse_promotions("nothing to promote") == []
        assert parse_promotions('{"other": [1]}') == []


class TestReflect:
    @pytest.mark.asyncio
    async def test_promotes_chosen_entries(self, reflector, selector, journal, agent, memory_store):
        selector.ask.return_value = ModelResponse(content='{"promote": [1, 3]}')

        assert await reflector.reflect(agent) == 2

        core = [m.content for m in memory_store.of(agent.id, MemoryType.CORE)]
        assert sorted(core) == ["Sam prefers short answers", "Sam trusts me with drafts"]
        assert [m.content for m in memory_store.of(agent.id, MemoryType.JOURNAL)] == ["Sam had lunch"]

    @pytest.mark.asyncio
    async def test_promoting_nothing(self, reflector, journal, agent, memory_store):
        assert await reflector.reflect(agent) == 0
        assert memory_store.of(agent.id, MemoryType.CORE) == []

    @pytest.mark.asyncio
    async def test_out_of_range_and_duplicate_indices_are_ignored(
        self, reflector, selector, journal, agent, memory_store
    ):
        selector.ask.return_value = ModelResponse(content='{"promote": [2, 2, 9, -1]}')

        assert await reflector.reflect(agent) == 1
        assert [m.content for m in memory_store.of(agent.id, MemoryType.CORE)] == ["Sam had lunch"]

    @pytest.mark.asyncio
    async def test_prompt_lists_core_and_numbered_journal(
        self, reflector, selector, journal, agent, memory_store
    ):
        memory_store.add(agent.id, "I value honesty", created_at=NOW - timedelta(days=40))

        await reflector.reflect(agent)

        model_id, prompt = selector.ask.await_args.args
        assert model_id == agent.model_id
        assert "1. I value honesty" in prompt
        assert "1. [2026-03-07] Sam prefers short answers" in prompt
        assert "3. [2026-03-09] Sam trusts me with drafts" in prompt
        assert '{"promote": [1, 3]}' in prompt

    @pytest.mark.asyncio
    async def test_empty_core_placeholder(self, reflector, selector, journal, agent):
        await reflector.reflect(agent)

        prompt = selector.ask.await_args.args[1]
        assert "None yet - you're still forming your identity." in prompt

    @pytest.mark.asyncio
    async def test_no_live_journal_means_no_call(self, reflector, selector, agent, memory_store):
        memory_store.add(agent.id, "ancient", MemoryType.JOURNAL, created_at=NOW - timedelta(days=30))

        assert await reflector.reflect(agent) == 0
        selector.ask.assert_not_awaited()


class TestSweep:
    @pytest.mark.asyncio
    async def test_only_agents_with_recent_journal(
        self, reflector, selector, journal, agent, other_agent
    ):
        selector.ask.return_value = ModelResponse(content='{"promote": [1]}')

        assert await reflector.sweep() == 1
        assert selector.ask.await_count == 1

    @pytest.mark.asyncio
    async def test_inactive_agents_are_skipped(
        self, reflector, selector, journal, agent, agent_store
    ):
        agent_store.agents[agent.id].active = False

        assert await reflector.sweep() == 0
        selector.ask.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_rest(
        self, reflector, selector, journal, agent, other_agent, memory_store
    ):
        memory_store.add(other_agent.id, "Brook's note", MemoryType.JOURNAL, created_at=NOW)
        selector.ask.side_effect = [
            RuntimeError("provider down"),
            ModelResponse(content='{"promote": [1]}'),
        ]

        assert await reflector.sweep() == 1
        assert selector.ask.await_count == 2
