"""Rendering of an agent's memories for prompts."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from ..domain.entities import AgentMemory, MemoryType
from ..domain.ports import IMemoryStore


def format_memory_context(memories: Iterable[AgentMemory]) -> Optional[str]:
    """Private memory block injected into the agent's prompts.

    Returns None when the agent has nothing to remember yet.
    """
    memories = sorted(memories, key=lambda m: m.created_at)
    core = [m for m in memories if m.memory_type == MemoryType.CORE]
    journal = [m for m in memories if m.memory_type == MemoryType.JOURNAL]

    sections = []
    if core:
        sections.append(
            "## Core Memories (permanent)\n" + "\n".join(f"- {m.content}" for m in core)
        )
    if journal:
        sections.append(
            "## Recent Journal Entries\n"
            + "\n".join(f"- [{m.created_at:%Y-%m-%d}] {m.content}" for m in journal)
        )
    if not sections:
        return None
    return "# Your Private Memory\n\n" + "\n\n".join(sections)


async def load_memory_context(
    store: IMemoryStore, agent_id, now: datetime, journal_window: timedelta
) -> Optional[str]:
    """Core memories plus the journal entries still inside the window."""
    core = await store.list_core(agent_id)
    journal = await store.list_journal(agent_id, now - journal_window)
    live = [m for m in journal if not m.is_expired(now, journal_window)]
    return format_memory_context([*core, *live])


def core_token_usage(memories: Iterable[AgentMemory]) -> int:
    return sum(m.token_estimate for m in memories if not m.is_discarded)
