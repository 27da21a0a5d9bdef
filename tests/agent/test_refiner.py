"""
Tests for consent-gated memory refinement.

Covers:
- When an agent needs refinement (budget, first time, interval)
- Consent parsing
- Consent and refinement prompts
- A full session driven through the refinement tool
- Sweep isolation
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import NOW
from helix.agent.domain.entities import ModelResponse
from helix.agent.memory import RefinementTool, Refiner, is_consent


class ScriptedModel:
    """Stands in for selector.ask: answers consent, then drives the tool."""

    def __init__(self, consent, actions=()):
        self.consent = consent
        self.actions = list(actions)
        self.prompts = []
        self.results = []

    async def ask(self, model_id, prompt, system_prompt=None, tools=None):
        self.prompts.append(prompt)
        if not tools:
            return ModelResponse(content=self.consent)
        [tool] = tools
        for arguments in self.actions:
            self.results.append(await tool.execute(arguments))
        return ModelResponse(content="Done.")


@pytest.fixture
def selector():
    selector = MagicMock()
    selector.ask = AsyncMock()
    return selector


@pytest.fixture
def refiner(agent_store, memory_store, audit_log, selector, settings, clock):
    return Refiner(agent_store, memory_store, audit_log, selector, settings, clock)


@pytest.fixture
def core(memory_store, agent):
    return [
        memory_store.add(agent.id, "I value honesty above cleverness.", created_at=NOW - timedelta(days=60)),
        memory_store.add(agent.id, "Honesty matters more to me than cleverness.", created_at=NOW - timedelta(days=20)),
        memory_store.add(agent.id, "Sam is writing a book about rivers.", created_at=NOW - timedelta(days=5)),
    ]


class TestIsConsent:
    @pytest.mark.parametrize("answer", ["YES", "yes, please", "  Yes. It's been a while.", "YES\nIt has been a while."])
    def test_yes(self, answer):
        assert is_consent(answer)

    @pytest.mark.parametrize("answer", ["NO", "Not now", "Yesterday was busy", "I think yes", "", None])
    def test_not_yes(self, answer):
        assert not is_consent(answer)


class TestNeedsRefinement:
    @pytest.mark.asyncio
    async def test_no_core_memories(self, refiner, agent):
        assert await refiner.needs_refinement(agent) is False

    @pytest.mark.asyncio
    async def test_never_refined(self, refiner, agent, core):
        assert await refiner.needs_refinement(agent) is True

    @pytest.mark.asyncio
    async def test_recently_refined_within_budget(self, refiner, agent, core):
        agent.last_refinement_at = NOW - timedelta(days=1)

        assert await refiner.needs_refinement(agent) is False

    @pytest.mark.asyncio
    async def test_interval_elapsed(self, refiner, agent, core):
        agent.last_refinement_at = NOW - timedelta(days=8)

        assert await refiner.needs_refinement(agent) is True

    @pytest.mark.asyncio
    async def test_over_budget(self, refiner, agent, memory_store):
        memory_store.add(agent.id, "x" * 24_000)
        agent.last_refinement_at = NOW - timedelta(hours=1)

        assert await refiner.needs_refinement(agent) is True


class TestRefine:
    @pytest.mark.asyncio
    async def test_declined_consent_runs_nothing(self, refiner, selector, agent, core, audit_log):
        selector.ask.side_effect = ScriptedModel("NO - my memories feel right.").ask

        assert await refiner.refine(agent) is None

        assert selector.ask.await_count == 1
        assert audit_log.entries == []

    @pytest.mark.asyncio
    async def test_consent_prompt(self, refiner, selector, agent, core):
        model = ScriptedModel("NO")
        selector.ask.side_effect = model.ask

        await refiner.refine(agent)

        [prompt] = model.prompts
        assert prompt.startswith(agent.system_prompt)
        assert "# Your Private Memory" in prompt
        assert "# Memory Refinement Request" in prompt
        assert "- Core memories: 3" in prompt
        assert "- Token budget: 5000 tokens" in prompt
        assert "- Within budget" in prompt
        assert "**YES** or **NO**" in prompt

    @pytest.mark.asyncio
    async def test_session_runs_with_tool(
        self, refiner, selector, agent, core, memory_store, audit_log, agent_store
    ):
        model = ScriptedModel(
            "YES. There is a duplicate.",
            actions=[
                {"action": "search", "query": "honesty"},
                {
                    "action": "consolidate",
                    "ids": f"{core[0].id},{core[1].id}",
                    "content": "I value honesty above cleverness; it matters to me more than anything.",
                },
                {"action": "complete", "summary": "Merged two honesty memories."},
            ],
        )
        selector.ask.side_effect = model.ask

        tool = await refiner.refine(agent)

        assert isinstance(tool, RefinementTool)
        assert tool.completed
        assert tool.pre_session_mass == sum(m.token_estimate for m in core)
        assert [r["type"] for r in model.results] == [
            "search_results", "consolidated", "refinement_complete",
        ]

        _, refinement_prompt = model.prompts
        assert "# Memory Refinement Session" in refinement_prompt
        assert f"- #{core[2].id} (2026-03-05, ~{core[2].token_estimate} tokens): " in refinement_prompt
        assert "Merge memories that say the same thing." in refinement_prompt

        sessions = {e.data["session_id"] for e in audit_log.entries}
        assert sessions == {tool.session_id}
        assert agent_store.agents[agent.id].last_refinement_at == NOW

    @pytest.mark.asyncio
    async def test_custom_guidance_and_constitutional_flag(
        self, refiner, selector, agent, core, memory_store
    ):
        agent.refinement_prompt = "Never merge anything about Sam."
        memory_store.memories[core[0].id].constitutional = True
        model = ScriptedModel("yes")
        selector.ask.side_effect = model.ask

        await refiner.refine(agent)

        refinement_prompt = model.prompts[1]
        assert "Never merge anything about Sam." in refinement_prompt
        assert "[CONSTITUTIONAL]: I value honesty above cleverness." in refinement_prompt

    @pytest.mark.asyncio
    async def test_over_budget_status(self, refiner, selector, agent, memory_store):
        memory_store.add(agent.id, "x" * 20_400)
        model = ScriptedModel("NO")
        selector.ask.side_effect = model.ask

        await refiner.refine(agent)

        assert "- Over budget by: 100 tokens" in model.prompts[0]


class TestSweep:
    @pytest.mark.asyncio
    async def test_counts_sessions_and_isolates_failures(
        self, refiner, selector, agent, other_agent, core, memory_store
    ):
        memory_store.add(other_agent.id, "I like tidy code.")

        async def ask(model_id, prompt, system_prompt=None, tools=None):
            if model_id == agent.model_id:
                raise RuntimeError("provider down")
            if tools:
                await tools[0].execute({"action": "complete", "summary": "Nothing to do."})
                return ModelResponse(content="Done.")
            return ModelResponse(content="YES")

        selector.ask.side_effect = ask

        assert await refiner.sweep() == 1

    @pytest.mark.asyncio
    async def test_agents_that_do_not_need_it_are_not_asked(self, refiner, selector, agent):
        assert await refiner.sweep() == 0
        selector.ask.assert_not_awaited()
