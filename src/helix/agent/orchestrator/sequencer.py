"""
Multi-agent sequencer.

Runs several agents over one chat strictly one after another. Each step
runs a single agent's turn and, only once it has succeeded, queues the
remaining agents as a new step. A failed step is retried by the queue
without re-running the agents that already answered, and every agent sees
the finished replies of the agents before it.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence
from uuid import UUID

from ..domain.ports import ITaskQueue
from ..resilience import TURN_RETRY_POLICY
from .response import ResponseOrchestrator

logger = logging.getLogger(__name__)


class MultiAgentSequencer:
    """Chains agent turns through the task queue.

    Usage:
        sequencer = MultiAgentSequencer(orchestrator, worker)
        await sequencer.schedule(chat.id, [agent_a.id, agent_b.id])
    """

    def __init__(self, orchestrator: ResponseOrchestrator, task_queue: ITaskQueue):
        self.orchestrator = orchestrator
        self.task_queue = task_queue

    async def schedule(self, chat_id: UUID, agent_ids: Sequence[UUID]) -> Optional[UUID]:
        """Queue the first step of a sequence."""
        agent_ids = list(agent_ids)
        if not agent_ids:
            return None
        return await self._submit(chat_id, agent_ids)

    async def run(self, chat_id: UUID, agent_ids: Sequence[UUID]) -> None:
        """Run the head agent's turn, then queue the rest.

        Errors from the head turn propagate so the queue retries this same
        step; the tail is not queued until the head succeeds.
        """
        agent_ids = list(agent_ids)
        if not agent_ids:
            return

        head, tail = agent_ids[0], agent_ids[1:]
        logger.info(f"Sequencing agent {head} in chat {chat_id} ({len(tail)} remaining)")

        await self.orchestrator.run_turn(chat_id, head)

        if tail:
            await self._submit(chat_id, tail)

    async def _submit(self, chat_id: UUID, agent_ids: list[UUID]) -> Optional[UUID]:
        return await self.task_queue.submit(
            self.run,
            chat_id,
            agent_ids,
            name=f"agent_sequence:{chat_id}:{agent_ids[0]}",
            retry_policy=TURN_RETRY_POLICY,
        )
