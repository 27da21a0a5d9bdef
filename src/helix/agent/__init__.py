"""
Helix Agent Core.

Runs AI agents that converse in shared chat threads: streamed replies with
tool calls, sequential multi-agent turns, a memory lifecycle that turns
conversations into durable agent memory, and self-initiated conversations.

Architecture:
- Domain: Core entities and port interfaces
- Providers: Model routing and the Anthropic / OpenAI-compatible integrations
- Orchestrator: Per-turn streaming state machine and multi-agent sequencing
- Memory: Consolidation, reflection and consent-gated refinement
- Initiation: Decisions to continue or start conversations unprompted
- Tools: Tool base class and registry
- Background worker and scheduler for sweeps and retried turns

Persistence, live broadcast transport and notifications are adapters behind
the ports in ``helix.agent.domain.ports``.
"""

# Domain entities
from .domain.entities import (
    Agent,
    AgentMemory,
    AuditEntry,
    Chat,
    ChatEvent,
    ChatEventType,
    LiveUpdate,
    LiveUpdateType,
    MemoryType,
    Message,
    MessageRole,
    ModelResponse,
    ModelSession,
    ToolCall,
    ToolDefinition,
)

# Configuration and errors
from .config import AgentSettings
from .exceptions import (
    BadRequestError,
    ConfigurationError,
    HelixError,
    MissingCapabilityError,
    ModelNotFoundError,
    ProviderError,
    TransientProviderError,
)

# Orchestrator
from .orchestrator import MultiAgentSequencer, ResponseOrchestrator, StreamBuffer

# Providers
from .providers import ModelRegistry, ProviderRoute, ProviderSelector

# Memory
from .memory import Consolidator, RefinementTool, Refiner, Reflector

# Initiation
from .initiation import InitiationDecision, InitiationEngine, parse_decision

# Tasks
from .background_worker import BackgroundWorker
from .resilience import RetryPolicy, RetryRule, SWEEP_RETRY_POLICY, TURN_RETRY_POLICY

__all__ = [
    # Domain
    "Agent",
    "AgentMemory",
    "AuditEntry",
    "Chat",
    "ChatEvent",
    "ChatEventType",
    "LiveUpdate",
    "LiveUpdateType",
    "MemoryType",
    "Message",
    "MessageRole",
    "ModelResponse",
    "ModelSession",
    "ToolCall",
    "ToolDefinition",
    # Config / errors
    "AgentSettings",
    "BadRequestError",
    "ConfigurationError",
    "HelixError",
    "MissingCapabilityError",
    "ModelNotFoundError",
    "ProviderError",
    "TransientProviderError",
    # Orchestrator
    "MultiAgentSequencer",
    "ResponseOrchestrator",
    "StreamBuffer",
    # Providers
    "ModelRegistry",
    "ProviderRoute",
    "ProviderSelector",
    # Memory
    "Consolidator",
    "RefinementTool",
    "Refiner",
    "Reflector",
    # Initiation
    "InitiationDecision",
    "InitiationEngine",
    "parse_decision",
    # Tasks
    "BackgroundWorker",
    "RetryPolicy",
    "RetryRule",
    "SWEEP_RETRY_POLICY",
    "TURN_RETRY_POLICY",
]
