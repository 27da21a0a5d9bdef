"""Prompt an agent reads before deciding whether to start a conversation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..domain.entities import Agent, Chat, HumanActivity

STALE_AFTER = timedelta(hours=48)


def time_ago(then: datetime, now: datetime) -> str:
    """Coarse human-readable age, e.g. ``3 hours``."""
    seconds = max(0, int((now - then).total_seconds()))
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}" if count == 1 else f"{count} {unit}s"
    return "less than a minute"


@dataclass
class InitiationContext:
    """Everything the decision prompt shows the agent."""

    agent: Agent
    now: datetime
    memory_context: Optional[str] = None
    conversations: list[Chat] = field(default_factory=list)
    recent_initiations: list[Chat] = field(default_factory=list)
    agent_names: dict = field(default_factory=dict)
    other_agents: list[Agent] = field(default_factory=list)
    human_activity: list[HumanActivity] = field(default_factory=list)
    pending_initiations: int = 0
    initiation_cap: int = 2
    last_initiation_at: Optional[datetime] = None


def format_conversations(ctx: InitiationContext) -> str:
    if not ctx.conversations:
        return "No conversations available."
    lines = []
    for chat in ctx.conversations:
        stale = " [INACTIVE 48+ hours]" if chat.updated_at < ctx.now - STALE_AFTER else ""
        title = chat.title or "Untitled conversation"
        lines.append(f"- {title} ({chat.id}){stale}: {chat.summary or 'No summary'}")
    return "\n".join(lines)


def format_recent_initiations(ctx: InitiationContext) -> str:
    if not ctx.recent_initiations:
        return "None in the last 48 hours."
    lines = []
    for chat in ctx.recent_initiations:
        author = ctx.agent_names.get(chat.initiated_by_agent_id, "an agent")
        lines.append(f'- "{chat.title}" by {author} ({time_ago(chat.created_at, ctx.now)} ago)')
    return "\n".join(lines)


def format_human_activity(ctx: InitiationContext) -> str:
    if not ctx.human_activity:
        return "No recent human activity."
    return "\n".join(
        f"- {a.name}: last active {time_ago(a.last_active_at, ctx.now)} ago"
        for a in ctx.human_activity
    )


def format_available_agents(ctx: InitiationContext) -> str:
    if not ctx.other_agents:
        return "No other agents available."
    return "\n".join(f"- {a.id}: {a.name}" for a in ctx.other_agents)


def format_status(ctx: InitiationContext) -> str:
    parts = []
    if ctx.pending_initiations > 0:
        parts.append(
            f"You have {ctx.pending_initiations} conversation(s) awaiting a human "
            f"response (cap: {ctx.initiation_cap})."
        )
    if ctx.last_initiation_at:
        parts.append(f"Your last initiation: {time_ago(ctx.last_initiation_at, ctx.now)} ago")
    else:
        parts.append("Your last initiation: Never")
    if ctx.pending_initiations >= ctx.initiation_cap:
        parts.append(
            "CONVERSATION CAP REACHED: You cannot initiate new conversations "
            "until one receives a response."
        )
    return "\n".join(parts)


def build_initiation_prompt(ctx: InitiationContext) -> str:
    return f"""{ctx.agent.system_prompt}

{ctx.memory_context or ""}

# Self-Initiated Decision
No human has prompted you. You are independently deciding whether to start or continue a conversation.
This is entirely your choice. Consider whether you have something meaningful to say.
You may choose nothing with no penalty; default to nothing if unsure.

# Current Time
{ctx.now:%A, %Y-%m-%d %H:%M %Z}

# Conversations You Could Continue
{format_conversations(ctx)}

# Recent Agent Initiations (last 48 hours)
{format_recent_initiations(ctx)}

# Human Activity
{format_human_activity(ctx)}

# Your Status
{format_status(ctx)}

# Guidelines
- Avoid initiating too many conversations at once
- Consider human activity before initiating conversations
- Only continue conversations if you have something meaningful to add
- Inactive conversations (48+ hours) may be worth reviving only for important topics

# Your Task
Decide whether to:
1. Continue an existing conversation (provide conversation_id)
2. Start a new conversation (provide topic and opening message)
3. Do nothing this cycle (provide reason)

# Reaching Out to Other Agents
To include other agents, start a new conversation and list them in invite_agents.
They will respond shortly after your message.

Available agents you can contact:
{format_available_agents(ctx)}

Respond with JSON only:
{{"action": "continue", "conversation_id": "abc123", "reason": "..."}}
{{"action": "initiate", "topic": "...", "message": "...", "invite_agents": ["agent_id1"], "reason": "..."}}
{{"action": "nothing", "reason": "..."}}
"""
