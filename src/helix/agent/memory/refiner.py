"""
Memory refinement.

Core memories grow without bound unless the agent tidies them up. When an
agent is over its core token budget, or has not refined for a while, it is
first asked whether it wants a refinement session. Only on a clear YES does
it get the RefinementTool over its own ledger.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..config import AgentSettings
from ..domain.entities import Agent, AgentMemory, utcnow
from ..domain.ports import IAgentStore, IAuditLog, IMemoryStore
from .context import core_token_usage, load_memory_context
from .refinement_tool import RefinementTool

logger = logging.getLogger(__name__)

CONSENT_PATTERN = re.compile(r"^YES\b", re.IGNORECASE)

DEFAULT_REFINEMENT_GUIDANCE = (
    "Merge memories that say the same thing. Keep every distinct fact, "
    "relationship and commitment. Prefer your own voice."
)


def budget_line(usage: int, budget: int) -> str:
    if usage > budget:
        return f"Over budget by: {usage - budget} tokens"
    return "Within budget"


def status_block(memories: list[AgentMemory], usage: int, budget: int) -> str:
    return (
        "## Current Status\n"
        f"- Core memories: {len(memories)}\n"
        f"- Token usage: {usage} tokens\n"
        f"- Token budget: {budget} tokens\n"
        f"- {budget_line(usage, budget)}"
    )


def format_ledger(memories: list[AgentMemory]) -> str:
    lines = []
    for m in memories:
        flag = " [CONSTITUTIONAL]" if m.constitutional else ""
        lines.append(
            f"- #{m.id} ({m.created_at:%Y-%m-%d}, ~{m.token_estimate} tokens){flag}: {m.content}"
        )
    return "\n".join(lines)


def build_consent_prompt(
    agent: Agent,
    memory_context: Optional[str],
    memories: list[AgentMemory],
    usage: int,
    budget: int,
) -> str:
    return f"""{agent.system_prompt}

{memory_context or ""}

# Memory Refinement Request

A scheduled memory refinement session is about to run. Before it begins, you are being asked whether you consent to this session.

{status_block(memories, usage, budget)}

Memory refinement will review your core memories to de-duplicate entries and tighten phrasing. It does NOT summarize, compress, or delete memories unless they are exact duplicates. Constitutional memories are never touched. Completing with zero operations is a valid and good outcome.

Do you want to run memory refinement now? Reply with **YES** or **NO** as the first word of your response. You may briefly explain your reasoning after.
"""


def build_refinement_prompt(
    agent: Agent, memories: list[AgentMemory], usage: int, budget: int
) -> str:
    return f"""{agent.system_prompt}

# Memory Refinement Session

You are reviewing your own core memories. This is de-duplication, not compression.

{agent.refinement_prompt or DEFAULT_REFINEMENT_GUIDANCE}

{status_block(memories, usage, budget)}

## Your Core Memory Ledger
{format_ledger(memories)}

Review your memories. De-duplicate exact duplicates. Tighten phrasing within individual memories if possible. When done, call complete with a brief summary. Doing nothing is fine.
"""


def is_consent(answer: Optional[str]) -> bool:
    return bool(CONSENT_PATTERN.match((answer or "").strip()))


class Refiner:
    """Consent-gated refinement of agents' core memories.

    Usage:
        refiner = Refiner(agents, memories, audit, selector, settings)
        await refiner.sweep()
    """

    def __init__(
        self,
        agent_store: IAgentStore,
        memory_store: IMemoryStore,
        audit_log: IAuditLog,
        selector,
        settings: AgentSettings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.agent_store = agent_store
        self.memory_store = memory_store
        self.audit_log = audit_log
        self.selector = selector
        self.settings = settings
        self.clock = clock

    async def sweep(self) -> int:
        """Refine every active agent that needs it.

        Returns:
            Number of agents that ran a refinement session
        """
        logger.info("[Refinement] Sweep starting")
        refined = 0
        for agent in await self.agent_store.list_active_agents():
            try:
                if not await self.needs_refinement(agent):
                    continue
                logger.info(f"[Refinement] Agent {agent.id} ({agent.name}) needs refinement")
                if await self.refine(agent) is not None:
                    refined += 1
            except Exception as e:
                logger.error(f"[Refinement] Failed for agent {agent.id}: {e}")
        logger.info("[Refinement] Sweep complete")
        return refined

    async def needs_refinement(self, agent: Agent) -> bool:
        memories = await self.memory_store.list_core(agent.id)
        if not memories:
            return False
        if core_token_usage(memories) > self.settings.core_token_budget:
            return True
        if agent.last_refinement_at is None:
            return True
        interval = timedelta(days=self.settings.refinement_interval_days)
        return agent.last_refinement_at < self.clock() - interval

    async def refine(self, agent: Agent) -> Optional[RefinementTool]:
        """Ask for consent, then run one refinement session.

        Returns:
            The session's tool (for its stats), or None when nothing ran
        """
        memories = await self.memory_store.list_core(agent.id)
        if not memories:
            return None

        usage = core_token_usage(memories)
        budget = self.settings.core_token_budget

        if not await self._consents(agent, memories, usage, budget):
            logger.info(f"[Refinement] Agent {agent.id} ({agent.name}) declined refinement")
            return None

        tool = RefinementTool(
            agent,
            self.memory_store,
            self.audit_log,
            self.agent_store,
            session_id=str(uuid.uuid4()),
            pre_session_mass=usage,
            max_mutations=self.settings.refinement_max_mutations,
            clock=self.clock,
        )
        await self.selector.ask(
            agent.model_id,
            build_refinement_prompt(agent, memories, usage, budget),
            tools=[tool],
        )
        logger.info(f"[Refinement] Agent {agent.id} ({agent.name}) complete: {tool.stats}")
        return tool

    async def _consents(
        self, agent: Agent, memories: list[AgentMemory], usage: int, budget: int
    ) -> bool:
        memory_context = await load_memory_context(
            self.memory_store,
            agent.id,
            self.clock(),
            timedelta(days=self.settings.journal_window_days),
        )
        prompt = build_consent_prompt(agent, memory_context, memories, usage, budget)
        response = await self.selector.ask(agent.model_id, prompt)
        answer = (response.content or "").strip()
        consented = is_consent(answer)
        logger.info(
            f"[Refinement] Agent {agent.id} ({agent.name}) consent: "
            f"{'YES' if consented else 'NO'} ({answer[:200]})"
        )
        return consented
