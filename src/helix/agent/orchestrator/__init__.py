"""Agent turn orchestration.

Provides:
- Debounced stream buffers for content and reasoning deltas
- Live update publishing with sequence numbers
- The per-turn response state machine and its orchestrator
- Sequential multi-agent turns over one chat
"""

from .event_streamer import EventStreamer, chat_channel
from .response import (
    QUIET_TOOLS,
    ResponseOrchestrator,
    ResponseTurn,
    TurnStatus,
    empty_response_notice,
)
from .sequencer import MultiAgentSequencer
from .stream_buffer import StreamBuffer

__all__ = [
    "EventStreamer",
    "chat_channel",
    "QUIET_TOOLS",
    "ResponseOrchestrator",
    "ResponseTurn",
    "TurnStatus",
    "empty_response_notice",
    "MultiAgentSequencer",
    "StreamBuffer",
]
