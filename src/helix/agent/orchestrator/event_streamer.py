"""
Event Streamer for live chat updates.

Creates LiveUpdate objects with auto-incrementing sequence numbers and a
correlation ID, and publishes them to the chat's broadcast channel.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from ..domain.entities import LiveUpdate, LiveUpdateType
from ..domain.ports import IBroadcaster

logger = logging.getLogger(__name__)


def chat_channel(chat_id: UUID) -> str:
    return f"chat:{chat_id}"


class EventStreamer:
    """Publishes sequenced live updates for one chat.

    Usage:
        streamer = EventStreamer(broadcaster, chat_id, correlation_id=turn_id)
        await streamer.publish(LiveUpdateType.CONTENT, message_id, "Hello")
    """

    def __init__(
        self,
        broadcaster: IBroadcaster,
        chat_id: UUID,
        correlation_id: Optional[str] = None,
    ):
        """Initialize the event streamer.

        Args:
            broadcaster: Live channel transport
            chat_id: Chat whose subscribers receive the updates
            correlation_id: Optional correlation ID for request tracing
        """
        self.broadcaster = broadcaster
        self.chat_id = chat_id
        self.correlation_id = correlation_id
        self._sequence = 0

    def create_update(
        self,
        update_type: LiveUpdateType,
        message_id: Optional[UUID] = None,
        content: Optional[str] = None,
    ) -> LiveUpdate:
        """Create a LiveUpdate with auto-incrementing sequence."""
        self._sequence += 1
        return LiveUpdate(
            type=update_type,
            chat_id=self.chat_id,
            sequence=self._sequence,
            message_id=message_id,
            content=content,
            correlation_id=self.correlation_id,
        )

    async def publish(
        self,
        update_type: LiveUpdateType,
        message_id: Optional[UUID] = None,
        content: Optional[str] = None,
    ) -> LiveUpdate:
        update = self.create_update(update_type, message_id, content)
        await self.broadcaster.broadcast(chat_channel(self.chat_id), update.to_dict())
        return update

    @property
    def sequence(self) -> int:
        """Current sequence value (before next increment)."""
        return self._sequence
