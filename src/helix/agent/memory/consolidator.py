"""
Conversation consolidation.

Turns idle group chats into agent memories. Every agent in the chat reads
the transcript past the chat's watermark, chunk by chunk, and writes down
what it wants to remember as journal and core entries. The watermark moves
to the last message read whether or not anything was extracted, so each
message is read at most once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from ..config import AgentSettings
from ..domain.entities import (
    Agent,
    AgentMemory,
    Chat,
    MemoryType,
    Message,
    estimate_tokens,
    utcnow,
)
from ..domain.ports import IAgentStore, IChatStore, IMemoryStore, ITaskQueue
from ..resilience import SWEEP_RETRY_POLICY
from .parsing import parse_json_object, string_list

logger = logging.getLogger(__name__)

JSON_FORMAT_INSTRUCTION = """Respond ONLY with valid JSON:
{"journal": ["memory 1", "memory 2"], "core": ["memory 1"]}

If nothing is worth remembering:
{"journal": [], "core": []}"""

EXTRACTION_PROMPT = """You are reviewing a conversation you participated in to extract memories for yourself.

Your identity:
{system_prompt}

Your existing core memories:
{existing_memories}

Review this conversation and decide what you want to remember:

1. JOURNAL entries (short-term, will fade after a week):
   - Specific facts you learned about users or topics
   - Commitments or promises you made
   - Important context for ongoing work
   - Observations worth remembering temporarily

2. CORE entries (permanent identity memories):
   - Fundamental beliefs or values you want to hold
   - Key relationships you've established
   - Important lessons you've learned
   - Defining moments or decisions

Be selective. Only extract truly valuable memories, not routine exchanges.
Most conversations won't need any core memories.
You may update or refine existing memories if you've learned something new.
"""


def chunk_messages(messages: list[Message], target_tokens: int) -> list[list[Message]]:
    """Split messages, in order, into chunks of roughly target_tokens.

    A single message larger than the target gets a chunk of its own.
    """
    chunks: list[list[Message]] = []
    current: list[Message] = []
    current_tokens = 0

    for message in messages:
        tokens = estimate_tokens(message.transcript_line())
        if current and current_tokens + tokens > target_tokens:
            chunks.append(current)
            current = []
            current_tokens = 0
        current.append(message)
        current_tokens += tokens

    if current:
        chunks.append(current)
    return chunks


def format_existing_memories(memories: list[str]) -> str:
    if not memories:
        return "None yet."
    return "\n".join(f"- {m}" for m in memories)


def build_extraction_prompt(agent: Agent, existing_core: list[str]) -> str:
    template = agent.extraction_prompt or EXTRACTION_PROMPT
    prompt = template.replace(
        "{system_prompt}", agent.system_prompt or f"You are {agent.name}."
    ).replace("{existing_memories}", format_existing_memories(existing_core))
    return f"{prompt.rstrip()}\n\n{JSON_FORMAT_INSTRUCTION}"


def parse_extraction(text: Optional[str]) -> dict[str, list[str]]:
    """Read ``{"journal": [...], "core": [...]}``; anything else is empty."""
    data = parse_json_object(text)
    if data is None:
        return {"journal": [], "core": []}
    return {
        "journal": string_list(data.get("journal")),
        "core": string_list(data.get("core")),
    }


class Consolidator:
    """Extracts agent memories from idle group chats.

    Usage:
        consolidator = Consolidator(chats, agents, memories, selector, settings, worker)
        await consolidator.sweep()
    """

    def __init__(
        self,
        chat_store: IChatStore,
        agent_store: IAgentStore,
        memory_store: IMemoryStore,
        selector,
        settings: AgentSettings,
        task_queue: Optional[ITaskQueue] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.chat_store = chat_store
        self.agent_store = agent_store
        self.memory_store = memory_store
        self.selector = selector
        self.settings = settings
        self.task_queue = task_queue
        self.clock = clock

    @property
    def idle_threshold(self) -> timedelta:
        return timedelta(hours=self.settings.consolidation_idle_hours)

    async def sweep(self) -> int:
        """Consolidate every stale group chat.

        Each chat is its own task when a queue is configured; otherwise
        chats run inline and one failure does not stop the rest.

        Returns:
            Number of chats picked up
        """
        idle_since = self.clock() - self.idle_threshold
        chats = await self.chat_store.list_stale_group_chats(idle_since)
        logger.info(f"Consolidation sweep: {len(chats)} stale group chats")

        for chat in chats:
            if self.task_queue is not None:
                await self.task_queue.submit(
                    self.consolidate_chat,
                    chat.id,
                    name=f"consolidate_chat:{chat.id}",
                    retry_policy=SWEEP_RETRY_POLICY,
                )
                continue
            try:
                await self.consolidate_chat(chat.id)
            except Exception as e:
                logger.exception(f"Consolidation failed for chat {chat.id}: {e}")

        return len(chats)

    async def consolidate_chat(self, chat_id: UUID) -> int:
        """Extract memories from one chat's unread messages.

        Returns:
            Number of memories created
        """
        chat = await self.chat_store.get_chat(chat_id)
        if chat is None or not self._eligible(chat):
            return 0
        if await self._recently_active(chat):
            logger.debug(f"Chat {chat.id} is still active, skipping consolidation")
            return 0

        messages = await self.chat_store.list_messages_after(
            chat.id, chat.last_consolidated_message_id
        )
        if not messages:
            return 0

        chunks = chunk_messages(messages, self.settings.consolidation_chunk_tokens)
        created = 0
        for agent_id in chat.agent_ids:
            agent = await self.agent_store.get_agent(agent_id)
            if agent is None:
                continue
            created += await self._extract_for_agent(agent, chunks)

        await self._mark_consolidated(chat, messages[-1])
        logger.info(
            f"Consolidated chat {chat.id}: {len(messages)} messages, "
            f"{len(chunks)} chunks, {created} memories"
        )
        return created

    def _eligible(self, chat: Chat) -> bool:
        return chat.is_group_chat and chat.discarded_at is None

    async def _recently_active(self, chat: Chat) -> bool:
        latest = await self.chat_store.get_latest_message(chat.id)
        if latest is None:
            return False
        return latest.created_at > self.clock() - self.idle_threshold

    async def _extract_for_agent(self, agent: Agent, chunks: list[list[Message]]) -> int:
        existing_core = [m.content for m in await self.memory_store.list_core(agent.id)]
        created = 0

        for chunk in chunks:
            extracted = await self._call_extraction(agent, chunk, existing_core)
            created += await self._create_memories(agent, extracted)
            existing_core = existing_core + extracted["core"]

        return created

    async def _call_extraction(
        self, agent: Agent, chunk: list[Message], existing_core: list[str]
    ) -> dict[str, list[str]]:
        prompt = build_extraction_prompt(agent, existing_core)
        transcript = "\n\n".join(m.transcript_line() for m in chunk)
        try:
            response = await self.selector.ask(
                agent.model_id,
                f"{prompt}\n\n---\n\nConversation:\n\n{transcript}",
            )
        except Exception as e:
            logger.error(f"Memory extraction failed for agent {agent.id}: {e}")
            return {"journal": [], "core": []}
        return parse_extraction(response.content)

    async def _create_memories(self, agent: Agent, extracted: dict[str, list[str]]) -> int:
        created = 0
        for memory_type in (MemoryType.JOURNAL, MemoryType.CORE):
            for content in extracted[memory_type.value]:
                await self.memory_store.create_memory(
                    AgentMemory(
                        agent_id=agent.id,
                        memory_type=memory_type,
                        content=content.strip(),
                    )
                )
                created += 1
        return created

    async def _mark_consolidated(self, chat: Chat, last_message: Message) -> None:
        chat.last_consolidated_at = self.clock()
        chat.last_consolidated_message_id = last_message.id
        await self.chat_store.update_chat(chat)
