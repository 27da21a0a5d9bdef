"""
Tests for the Multi-Agent Sequencer.

Covers:
- One agent per step, tail queued only after the head succeeds
- Later agents see earlier agents' finished replies
- A failed step is retried without re-running earlier agents
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from helix.agent.domain.entities import ChatEvent, ModelResponse
from helix.agent.domain.ports import ILLMProvider
from helix.agent.exceptions import ServerError
from helix.agent.orchestrator import MultiAgentSequencer, ResponseOrchestrator
from helix.agent.providers import ModelRegistry, ProviderSelector
from helix.agent.resilience import TURN_RETRY_POLICY


class EchoProvider(ILLMProvider):
    """Answers with a fixed line per model id; can fail a set number of times."""

    def __init__(self, replies, failures=None):
        self.replies = replies
        self.failures = dict(failures or {})
        self.calls = []

    @property
    def provider_name(self):
        return "echo"

    async def stream(self, session):
        self.calls.append(session.model_id)
        if self.failures.get(session.model_id, 0) > 0:
            self.failures[session.model_id] -= 1
            raise ServerError("upstream 502")
        text = self.replies[session.model_id]
        yield ChatEvent.new_message(1)
        yield ChatEvent.text_delta(text, 2)
        yield ChatEvent.end_message(ModelResponse(content=text, output_tokens=3), 3)


@pytest.fixture
def make_sequencer(chat_store, agent_store, context_builder, broadcaster, task_queue, settings):
    def make(provider):
        registry = MagicMock(spec=ModelRegistry)
        registry.resolve.return_value = None
        registry.refresh = AsyncMock()
        orchestrator = ResponseOrchestrator(
            chat_store=chat_store,
            agent_store=agent_store,
            context_builder=context_builder,
            selector=ProviderSelector(settings, registry),
            broadcaster=broadcaster,
            task_queue=task_queue,
            registry=registry,
            provider_factory=lambda route: provider,
            clock=lambda: 0.0,
        )
        return MultiAgentSequencer(orchestrator, task_queue)

    return make


@pytest.fixture
def replies(agent, other_agent):
    return {agent.model_id: "Ada here.", other_agent.model_id: "Brook agrees."}


# ============================================
# Scheduling
# ============================================


class TestSchedule:
    @pytest.mark.asyncio
    async def test_empty_list_schedules_nothing(self, make_sequencer, group_chat, task_queue, replies):
        sequencer = make_sequencer(EchoProvider(replies))

        assert await sequencer.schedule(group_chat.id, []) is None
        assert task_queue.submitted == []

    @pytest.mark.asyncio
    async def test_schedule_queues_first_step_only(
        self, make_sequencer, group_chat, agent, other_agent, task_queue, replies
    ):
        sequencer = make_sequencer(EchoProvider(replies))

        await sequencer.schedule(group_chat.id, [agent.id, other_agent.id])

        [task] = task_queue.submitted
        assert task["func"] == sequencer.run
        assert task["args"] == (group_chat.id, [agent.id, other_agent.id])
        assert task["retry_policy"] is TURN_RETRY_POLICY
        assert task["name"] == f"agent_sequence:{group_chat.id}:{agent.id}"


# ============================================
# Running steps
# ============================================


class TestRun:
    @pytest.mark.asyncio
    async def test_agents_answer_in_order_and_see_each_other(
        self, make_sequencer, group_chat, agent, other_agent, task_queue, chat_store,
        context_builder, replies,
    ):
        sequencer = make_sequencer(EchoProvider(replies))
        await sequencer.schedule(group_chat.id, [agent.id, other_agent.id])

        await task_queue.run_next()
        assert task_queue.names() == [f"agent_sequence:{group_chat.id}:{other_agent.id}"]
        await task_queue.run_next()

        contents = [m.content for m in chat_store.chat_messages(group_chat.id)]
        assert contents == ["Ada here.", "Brook agrees."]

        brook_context = context_builder.calls[1]
        assert brook_context["agent_id"] == other_agent.id
        assert "[Ada]: Ada here." in [m["content"] for m in brook_context["messages"]]

    @pytest.mark.asyncio
    async def test_last_agent_queues_nothing(
        self, make_sequencer, group_chat, other_agent, task_queue, replies
    ):
        sequencer = make_sequencer(EchoProvider(replies))

        await sequencer.run(group_chat.id, [other_agent.id])

        assert task_queue.submitted == []

    @pytest.mark.asyncio
    async def test_failed_step_is_retried_without_rerunning_earlier_agents(
        self, make_sequencer, group_chat, agent, other_agent, task_queue, chat_store, replies
    ):
        provider = EchoProvider(replies, failures={other_agent.model_id: 1})
        sequencer = make_sequencer(provider)

        await sequencer.run(group_chat.id, [agent.id, other_agent.id])
        [step] = task_queue.submitted

        with pytest.raises(ServerError):
            await sequencer.run(*step["args"])
        assert task_queue.submitted == [step]

        # The queue retries the same step
        await sequencer.run(*step["args"])

        assert provider.calls == [agent.model_id, other_agent.model_id, other_agent.model_id]
        contents = [m.content for m in chat_store.chat_messages(group_chat.id)]
        assert contents == ["Ada here.", "Brook agrees."]
        assert len(task_queue.submitted) == 1
