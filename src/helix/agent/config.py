"""Runtime settings for the agent core.

Every tunable the orchestrator, memory sweeps and initiation engine use is
read from the environment here. Entry points call ``load_dotenv()`` before
``AgentSettings.from_env()`` so a local ``.env`` file works too.

Environment Variables:
    ANTHROPIC_API_KEY, OPENAI_API_KEY, OPENROUTER_API_KEY: provider credentials
    OPENROUTER_BASE_URL: aggregation endpoint (default: https://openrouter.ai/api/v1)
    STREAM_CONTENT_DEBOUNCE_MS / STREAM_THINKING_DEBOUNCE_MS: flush intervals
    CONSOLIDATION_IDLE_HOURS: idle time before a chat is consolidated (default: 6)
    CONSOLIDATION_CHUNK_TOKENS: transcript chunk target (default: 100000)
    JOURNAL_WINDOW_DAYS: journal memory lifetime (default: 7)
    CORE_TOKEN_BUDGET: core memory size that triggers refinement (default: 5000)
    REFINEMENT_INTERVAL_DAYS: max time between refinements (default: 7)
    REFINEMENT_MAX_MUTATIONS: per-session mutation cap (default: 10)
    INITIATION_CAP: default pending-initiation cap per agent (default: 2)
    INITIATION_ACTIVITY_DAYS: account activity window (default: 7)
    INITIATION_DAYTIME_START / INITIATION_DAYTIME_END: inclusive hours (9 / 20)
    INITIATION_TIMEZONE: reference timezone for the daytime window (default: UTC)
    INITIATION_JITTER_SECONDS: max per-agent scheduling jitter (default: 300)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def key_available(value: Optional[str]) -> bool:
    """True when a credential is set and is not a ``<placeholder>``."""
    if not value or not value.strip():
        return False
    return not value.strip().startswith("<")


@dataclass
class AgentSettings:
    """Tunables for the agent core.

    Attributes:
        anthropic_api_key: Key for the direct Anthropic integration
        openai_api_key: Key for the direct OpenAI integration
        openrouter_api_key: Key for the aggregation provider
        openrouter_base_url: Base URL of the aggregation provider
        content_debounce: Seconds between content flushes
        thinking_debounce: Seconds between reasoning flushes
        consolidation_idle_hours: Idle hours before consolidation
        consolidation_chunk_tokens: Target tokens per transcript chunk
        journal_window_days: Days a journal memory stays visible
        core_token_budget: Core memory tokens above which refinement runs
        refinement_interval_days: Days after which refinement runs anyway
        refinement_max_mutations: Mutations allowed per refinement session
        default_initiation_cap: Cap used when an agent has none set
        activity_window_days: Window for account eligibility and human activity context
        daytime_start_hour: First hour (inclusive) initiation may run
        daytime_end_hour: Last hour (inclusive) initiation may run
        timezone: Reference timezone for the daytime window
        initiation_jitter_seconds: Upper bound of per-agent random delay
        recent_initiation_hours: Window for "recent initiations" context
        max_tool_rounds: Tool-call rounds allowed in one turn
        max_tokens: Default completion ceiling
    """

    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    content_debounce: float = 0.2
    thinking_debounce: float = 0.1
    consolidation_idle_hours: int = 6
    consolidation_chunk_tokens: int = 100_000
    journal_window_days: int = 7
    core_token_budget: int = 5000
    refinement_interval_days: int = 7
    refinement_max_mutations: int = 10
    default_initiation_cap: int = 2
    activity_window_days: int = 7
    daytime_start_hour: int = 9
    daytime_end_hour: int = 20
    timezone: str = "UTC"
    initiation_jitter_seconds: int = 300
    recent_initiation_hours: int = 48
    max_tool_rounds: int = 10
    max_tokens: int = 4096

    @classmethod
    def from_env(cls) -> "AgentSettings":
        """Build settings from environment variables."""
        return cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY"),
            openrouter_base_url=os.getenv(
                "OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"
            ),
            content_debounce=_env_int("STREAM_CONTENT_DEBOUNCE_MS", 200) / 1000,
            thinking_debounce=_env_int("STREAM_THINKING_DEBOUNCE_MS", 100) / 1000,
            consolidation_idle_hours=_env_int("CONSOLIDATION_IDLE_HOURS", 6),
            consolidation_chunk_tokens=_env_int("CONSOLIDATION_CHUNK_TOKENS", 100_000),
            journal_window_days=_env_int("JOURNAL_WINDOW_DAYS", 7),
            core_token_budget=_env_int("CORE_TOKEN_BUDGET", 5000),
            refinement_interval_days=_env_int("REFINEMENT_INTERVAL_DAYS", 7),
            refinement_max_mutations=_env_int("REFINEMENT_MAX_MUTATIONS", 10),
            default_initiation_cap=_env_int("INITIATION_CAP", 2),
            activity_window_days=_env_int("INITIATION_ACTIVITY_DAYS", 7),
            daytime_start_hour=_env_int("INITIATION_DAYTIME_START", 9),
            daytime_end_hour=_env_int("INITIATION_DAYTIME_END", 20),
            timezone=os.getenv("INITIATION_TIMEZONE", "UTC"),
            initiation_jitter_seconds=_env_int("INITIATION_JITTER_SECONDS", 300),
            recent_initiation_hours=_env_int("INITIATION_RECENT_HOURS", 48),
            max_tool_rounds=_env_int("AGENT_MAX_TOOL_ROUNDS", 10),
            max_tokens=_env_int("AGENT_MAX_TOKENS", 4096),
        )

    @property
    def anthropic_available(self) -> bool:
        return key_available(self.anthropic_api_key)

    @property
    def openai_available(self) -> bool:
        return key_available(self.openai_api_key)

    @property
    def openrouter_available(self) -> bool:
        return key_available(self.openrouter_api_key)

    def __repr__(self):
        return (
            f"AgentSettings("
            f"anthropic={self.anthropic_available}, "
            f"openai={self.openai_available}, "
            f"openrouter={self.openrouter_available}, "
            f"debounce={self.content_debounce}s/{self.thinking_debounce}s, "
            f"idle={self.consolidation_idle_hours}h, "
            f"core_budget={self.core_token_budget}, "
            f"daytime={self.daytime_start_hour}-{self.daytime_end_hour} {self.timezone})"
        )
