"""
Initiation Decision Engine.

Periodically asks agents whether they want to speak up without being
prompted: continue a conversation, start a new one, or do nothing. The
sweep only runs during daytime hours, only for accounts with recent
activity, and spreads agents out with a random delay. An agent that
already has as many unanswered self-started conversations as its cap
allows is skipped before any model call.

Every outcome, skipped included, is recorded as exactly one audit entry.
"""

from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from ..config import AgentSettings
from ..domain.entities import Agent, AuditEntry, Chat, Message, MessageRole, utcnow
from ..domain.ports import (
    IAgentStore,
    IAuditLog,
    IChatStore,
    IMemoryStore,
    INotifier,
    ITaskQueue,
)
from ..memory.context import load_memory_context
from ..orchestrator.response import ResponseOrchestrator
from ..orchestrator.sequencer import MultiAgentSequencer
from ..resilience import SWEEP_RETRY_POLICY
from .decision import InitiationAction, InitiationDecision, parse_decision
from .prompt import InitiationContext, build_initiation_prompt

logger = logging.getLogger(__name__)

NO_OPENING_MESSAGE = "Chose to initiate without an opening message"


class InitiationEngine:
    """Lets agents decide on their own whether to start talking.

    Usage:
        engine = InitiationEngine(chats, agents, memories, audit, selector,
                                  settings, task_queue=worker,
                                  orchestrator=orchestrator, sequencer=sequencer)
        await engine.sweep()

        # Background variant: no "why I didn't act" notices
        await engine.sweep(background=True)
    """

    def __init__(
        self,
        chat_store: IChatStore,
        agent_store: IAgentStore,
        memory_store: IMemoryStore,
        audit_log: IAuditLog,
        selector,
        settings: AgentSettings,
        task_queue: Optional[ITaskQueue] = None,
        orchestrator: Optional[ResponseOrchestrator] = None,
        sequencer: Optional[MultiAgentSequencer] = None,
        notifier: Optional[INotifier] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.chat_store = chat_store
        self.agent_store = agent_store
        self.memory_store = memory_store
        self.audit_log = audit_log
        self.selector = selector
        self.settings = settings
        self.task_queue = task_queue
        self.orchestrator = orchestrator
        self.sequencer = sequencer
        self.notifier = notifier
        self.clock = clock
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def is_daytime(self, now: Optional[datetime] = None) -> bool:
        local = (now or self.clock()).astimezone(ZoneInfo(self.settings.timezone))
        return self.settings.daytime_start_hour <= local.hour <= self.settings.daytime_end_hour

    async def eligible_accounts(self, now: datetime) -> set[str]:
        """Accounts with an audit entry or a human message in the activity window."""
        since = now - timedelta(days=self.settings.activity_window_days)
        accounts = set(await self.audit_log.accounts_with_activity_since(since))
        accounts |= set(await self.chat_store.accounts_with_human_messages_since(since))
        return accounts

    async def sweep(self, background: bool = False) -> int:
        """Schedule a decision for every eligible agent.

        Returns:
            Number of agents scheduled (or decided inline)
        """
        now = self.clock()
        if not self.is_daytime(now):
            logger.info("[ConversationInitiation] Outside daytime hours, skipping sweep")
            return 0

        accounts = await self.eligible_accounts(now)
        if not accounts:
            logger.info("[ConversationInitiation] No recently active accounts")
            return 0

        agents = await self.agent_store.list_active_agents(accounts)
        logger.info(
            f"[ConversationInitiation] Sweep over {len(agents)} agents "
            f"in {len(accounts)} accounts"
        )

        for agent in agents:
            if self.task_queue is not None:
                await self.task_queue.submit(
                    self.decide_for_agent,
                    agent.id,
                    background=background,
                    name=f"agent_initiation:{agent.id}",
                    delay=self.rng.uniform(0, self.settings.initiation_jitter_seconds),
                    retry_policy=SWEEP_RETRY_POLICY,
                )
                continue
            try:
                await self.decide_for_agent(agent.id, background=background)
            except Exception as e:
                logger.error(f"[ConversationInitiation] Agent {agent.id} failed: {e}")

        return len(agents)

    # ------------------------------------------------------------------
    # One agent
    # ------------------------------------------------------------------

    def cap_for(self, agent: Agent) -> int:
        if agent.initiation_cap is not None:
            return agent.initiation_cap
        return self.settings.default_initiation_cap

    async def at_initiation_cap(self, agent: Agent) -> bool:
        pending = await self.chat_store.count_pending_initiations(agent.id)
        return pending >= self.cap_for(agent)

    async def decide_for_agent(
        self, agent_id: UUID, background: bool = False
    ) -> Optional[InitiationDecision]:
        """Ask one agent for a decision and carry it out.

        Returns:
            The recorded decision, or None when the agent is gone or inactive
        """
        agent = await self.agent_store.get_agent(agent_id)
        if agent is None or not agent.active:
            return None

        if await self.at_initiation_cap(agent):
            decision = InitiationDecision(action=InitiationAction.SKIPPED, reason="at_hard_cap")
            logger.info(f"[ConversationInitiation] Agent {agent.id} at initiation cap, skipped")
            await self._audit(agent, decision)
            return decision

        decision = await self.get_decision(agent)
        await self.execute(agent, decision, background=background)
        await self._audit(agent, decision)
        return decision

    async def get_decision(self, agent: Agent) -> InitiationDecision:
        ctx = await self.build_context(agent)
        response = await self.selector.ask(agent.model_id, build_initiation_prompt(ctx))
        decision = parse_decision(response.content)
        logger.info(
            f"[ConversationInitiation] Agent {agent.id} decided {decision.action.value}: "
            f"{decision.reason}"
        )
        return decision

    async def build_context(self, agent: Agent) -> InitiationContext:
        now = self.clock()
        since = now - timedelta(hours=self.settings.recent_initiation_hours)

        recent = await self.chat_store.list_initiated_chats(agent.account_id, since)
        account_agents = await self.agent_store.list_active_agents({agent.account_id})
        mine = [c.created_at for c in recent if c.initiated_by_agent_id == agent.id]

        return InitiationContext(
            agent=agent,
            now=now.astimezone(ZoneInfo(self.settings.timezone)),
            memory_context=await load_memory_context(
                self.memory_store,
                agent.id,
                now,
                timedelta(days=self.settings.journal_window_days),
            ),
            conversations=await self.chat_store.list_continuable_chats(agent.id),
            recent_initiations=recent,
            agent_names={a.id: a.name for a in account_agents},
            other_agents=[a for a in account_agents if a.id != agent.id],
            human_activity=await self.chat_store.human_activity_since(
                agent.account_id, now - timedelta(days=self.settings.activity_window_days)
            ),
            pending_initiations=await self.chat_store.count_pending_initiations(agent.id),
            initiation_cap=self.cap_for(agent),
            last_initiation_at=max(mine) if mine else None,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self, agent: Agent, decision: InitiationDecision, background: bool = False
    ) -> Optional[Chat]:
        if decision.action == InitiationAction.CONTINUE:
            return await self._continue(agent, decision, background)
        if decision.action == InitiationAction.INITIATE:
            return await self._initiate(agent, decision, background)
        await self._notify(agent, decision.reason or "Decided not to act", background)
        return None

    async def _continue(
        self, agent: Agent, decision: InitiationDecision, background: bool
    ) -> Optional[Chat]:
        chat = None
        if decision.conversation_id:
            chat = await self.chat_store.find_chat(agent.account_id, decision.conversation_id)

        if chat is None or not chat.is_respondable:
            await self._notify(
                agent,
                f"Chose to continue conversation {decision.conversation_id} "
                "but it's not respondable",
                background,
            )
            return None

        if self.orchestrator is None:
            logger.warning("No orchestrator configured, cannot continue conversation")
            return None

        await self.orchestrator.schedule_turn(chat.id, agent.id, initiation_reason=decision.reason)
        return chat

    async def _initiate(
        self, agent: Agent, decision: InitiationDecision, background: bool
    ) -> Optional[Chat]:
        """Start a new chat; downgrades the decision when nothing gets created."""
        if await self.at_initiation_cap(agent):
            await self._notify(
                agent,
                f"Wanted to initiate '{decision.topic}' but at initiation cap "
                f"({self.cap_for(agent)}+ pending conversations awaiting human response)",
                background,
            )
            decision.action = InitiationAction.SKIPPED
            decision.reason = "at_hard_cap"
            return None

        opening = (decision.message or "").strip()
        if not opening:
            logger.warning(f"Agent {agent.id} chose to initiate without a message, ignoring")
            decision.action = InitiationAction.NOTHING
            decision.reason = NO_OPENING_MESSAGE
            return None

        invited = await self._resolve_invites(agent, decision.invite_agents)
        chat = await self.chat_store.create_chat(
            Chat(
                account_id=agent.account_id,
                title=(decision.topic or opening[:60]).strip(),
                manual_responses=True,
                agent_ids=[agent.id, *(a.id for a in invited)],
                initiated_by_agent_id=agent.id,
                initiation_reason=decision.reason,
            )
        )
        await self.chat_store.create_message(
            Message(
                chat_id=chat.id,
                role=MessageRole.ASSISTANT,
                content=opening,
                agent_id=agent.id,
                author_name=agent.name,
                model_id=agent.model_id,
            )
        )
        logger.info(f"[ConversationInitiation] Agent {agent.id} started chat {chat.id}")

        if invited and self.sequencer is not None:
            await self.sequencer.schedule(chat.id, [a.id for a in invited])
        return chat

    async def _resolve_invites(self, agent: Agent, refs: list[str]) -> list[Agent]:
        invited = []
        for ref in refs:
            try:
                agent_id = uuid.UUID(str(ref))
            except ValueError:
                logger.debug(f"Ignoring invalid agent reference {ref!r}")
                continue
            other = await self.agent_store.get_agent(agent_id)
            if other is None or other.id == agent.id or not other.active:
                continue
            if other.account_id != agent.account_id or other in invited:
                continue
            invited.append(other)
        return invited

    async def _notify(self, agent: Agent, text: str, background: bool) -> None:
        if background or self.notifier is None:
            return
        try:
            await self.notifier.notify(agent, text)
        except Exception as e:
            logger.warning(f"Initiation notice for agent {agent.id} failed: {e}")

    async def _audit(self, agent: Agent, decision: InitiationDecision) -> None:
        await self.audit_log.record(
            AuditEntry(
                account_id=agent.account_id,
                action=f"agent_initiation_{decision.action.value}",
                agent_id=agent.id,
                data=decision.audit_data(),
            )
        )
