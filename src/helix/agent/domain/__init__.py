"""Domain entities and port interfaces for the agent core."""

from .entities import (
    Agent,
    AgentMemory,
    AuditEntry,
    Chat,
    ChatEvent,
    ChatEventType,
    HumanActivity,
    LiveUpdate,
    LiveUpdateType,
    MemoryType,
    Message,
    MessageRole,
    ModelResponse,
    ModelSession,
    ToolCall,
    ToolDefinition,
    estimate_tokens,
    utcnow,
)
from .ports import (
    IAgentStore,
    IAuditLog,
    IBroadcaster,
    IChatStore,
    IContextBuilder,
    ILLMProvider,
    IMemoryStore,
    IModelRegistry,
    INotifier,
    ITaskQueue,
)

__all__ = [
    # Entities
    "Agent",
    "AgentMemory",
    "AuditEntry",
    "Chat",
    "ChatEvent",
    "ChatEventType",
    "HumanActivity",
    "LiveUpdate",
    "LiveUpdateType",
    "MemoryType",
    "Message",
    "MessageRole",
    "ModelResponse",
    "ModelSession",
    "ToolCall",
    "ToolDefinition",
    "estimate_tokens",
    "utcnow",
    # Ports
    "IAgentStore",
    "IAuditLog",
    "IBroadcaster",
    "IChatStore",
    "IContextBuilder",
    "ILLMProvider",
    "IMemoryStore",
    "IModelRegistry",
    "INotifier",
    "ITaskQueue",
]
