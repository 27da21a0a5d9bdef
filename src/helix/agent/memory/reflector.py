"""
Memory reflection.

Agents periodically look back over their live journal entries and choose
which ones deserve to become permanent core memories. Promoting nothing is
the expected outcome most of the time.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..config import AgentSettings
from ..domain.entities import Agent, AgentMemory, utcnow
from ..domain.ports import IAgentStore, IMemoryStore
from .parsing import parse_json_object

logger = logging.getLogger(__name__)

REFLECTION_PROMPT = """You are reflecting on your recent experiences and observations.

Below are your permanent core memories (your identity and key learnings) followed by
your recent journal entries (numbered, temporary observations from the past week).

Review your journal entries and decide which, if any, should be promoted to permanent
core memories. Consider:

- Does this represent a lasting insight about yourself, users, or your role?
- Is this a pattern you've observed that will remain relevant?
- Does this capture something fundamental about how you should operate?
- Would losing this memory make you less effective long-term?

Most journal entries should NOT become core memories - they're meant to fade.
Only promote entries that represent genuine, lasting insights. It is completely
normal and expected to promote nothing.

## Your Core Memories (permanent)
{core_memories}

## Recent Journal Entries (will fade after 1 week)
{journal_entries}

---

Respond ONLY with valid JSON. List the numbers of journal entries to promote:

{{"promote": [1, 3]}}

If nothing should be promoted (most common case):
{{"promote": []}}
"""


def format_core_memories(memories: list[AgentMemory]) -> str:
    if not memories:
        return "None yet - you're still forming your identity."
    return "\n".join(f"{i}. {m.content}" for i, m in enumerate(memories, 1))


def format_journal_entries(entries: list[AgentMemory]) -> str:
    return "\n".join(
        f"{i}. [{m.created_at:%Y-%m-%d}] {m.content}" for i, m in enumerate(entries, 1)
    )


def parse_promotions(text: Optional[str]) -> list[int]:
    """1-based indices from ``{"promote": [...]}``; malformed input is empty."""
    data = parse_json_object(text)
    if data is None:
        return []

    raw = data.get("promote") or []
    if not isinstance(raw, list):
        raw = [raw]

    indices = []
    for value in raw:
        try:
            index = int(value)
        except (TypeError, ValueError):
            continue
        if index != 0:
            indices.append(index)
    return indices


class Reflector:
    """Lets agents promote journal entries to core memories."""

    def __init__(
        self,
        agent_store: IAgentStore,
        memory_store: IMemoryStore,
        selector,
        settings: AgentSettings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.agent_store = agent_store
        self.memory_store = memory_store
        self.selector = selector
        self.settings = settings
        self.clock = clock

    @property
    def journal_window(self) -> timedelta:
        return timedelta(days=self.settings.journal_window_days)

    async def sweep(self) -> int:
        """Reflect for every agent with live journal entries.

        Returns:
            Total number of promoted entries
        """
        since = self.clock() - self.journal_window
        agent_ids = await self.memory_store.agents_with_journal_since(since)
        logger.info(f"Reflection sweep: {len(agent_ids)} agents with recent journal entries")

        promoted = 0
        for agent_id in agent_ids:
            try:
                agent = await self.agent_store.get_agent(agent_id)
                if agent is None or not agent.active:
                    continue
                promoted += await self.reflect(agent)
            except Exception as e:
                logger.error(f"Memory reflection failed for agent {agent_id}: {e}")
        return promoted

    async def reflect(self, agent: Agent) -> int:
        now = self.clock()
        core = await self.memory_store.list_core(agent.id)
        journal = [
            m
            for m in await self.memory_store.list_journal(agent.id, now - self.journal_window)
            if not m.is_expired(now, self.journal_window)
        ]
        if not journal:
            return 0

        prompt = REFLECTION_PROMPT.format(
            core_memories=format_core_memories(core),
            journal_entries=format_journal_entries(journal),
        )
        response = await self.selector.ask(agent.model_id, prompt)
        return await self._promote(agent, journal, parse_promotions(response.content))

    async def _promote(
        self, agent: Agent, journal: list[AgentMemory], indices: list[int]
    ) -> int:
        promoted = 0
        for index in indices:
            if index < 1 or index > len(journal):
                logger.debug(f"Ignoring out-of-range promotion index {index} for agent {agent.id}")
                continue
            memory = journal[index - 1]
            if memory.is_core:
                continue
            memory.promote()
            await self.memory_store.update_memory(memory)
            promoted += 1

        if promoted:
            logger.info(f"Agent {agent.id} promoted {promoted} journal entries to core memories")
        return promoted
