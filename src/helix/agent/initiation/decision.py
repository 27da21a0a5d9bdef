"""Structured initiation decisions and their parsing."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..memory.parsing import find_json_object, strip_code_fences

logger = logging.getLogger(__name__)

RAW_RESPONSE_LIMIT = 1000
EXTRACTION_FAILED = "Could not extract decision from response"
EXTRACTED_JSON_INVALID = "Could not parse extracted JSON"

AUDIT_FIELDS = ("topic", "reason", "conversation_id", "invite_agents", "raw_response")


class InitiationAction(str, Enum):
    """Outcome of an initiation decision."""

    CONTINUE = "continue"
    INITIATE = "initiate"
    NOTHING = "nothing"
    SKIPPED = "skipped"  # Never asked: agent at its initiation cap


@dataclass
class InitiationDecision:
    """What an agent decided to do without being prompted.

    Attributes:
        action: continue, initiate or nothing (skipped is set by the engine)
        reason: The agent's stated reason
        conversation_id: Chat reference for ``continue``
        topic: Title for ``initiate``
        message: Opening message for ``initiate``
        invite_agents: Agent ids to invite for ``initiate``
        raw_response: Model reply kept when it could not be parsed
    """

    action: InitiationAction = InitiationAction.NOTHING
    reason: Optional[str] = None
    conversation_id: Optional[str] = None
    topic: Optional[str] = None
    message: Optional[str] = None
    invite_agents: list[str] = field(default_factory=list)
    raw_response: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InitiationDecision:
        raw_action = str(data.get("action") or "").strip().lower()
        try:
            action = InitiationAction(raw_action)
        except ValueError:
            logger.warning(f"Unknown initiation action '{raw_action}', treating as nothing")
            action = InitiationAction.NOTHING
        if action == InitiationAction.SKIPPED:
            action = InitiationAction.NOTHING

        invite = data.get("invite_agents") or []
        if not isinstance(invite, list):
            invite = [invite]

        def text(key: str) -> Optional[str]:
            value = data.get(key)
            return None if value is None else str(value)

        return cls(
            action=action,
            reason=text("reason"),
            conversation_id=text("conversation_id"),
            topic=text("topic"),
            message=text("message"),
            invite_agents=[str(a) for a in invite if a is not None],
            raw_response=text("raw_response"),
        )

    @classmethod
    def fallback(cls, reason: str, content: str) -> InitiationDecision:
        return cls(
            action=InitiationAction.NOTHING,
            reason=reason,
            raw_response=content[:RAW_RESPONSE_LIMIT],
        )

    def audit_data(self) -> dict[str, Any]:
        """Decision payload limited to the audited fields that are set."""
        data = {}
        for key in AUDIT_FIELDS:
            value = getattr(self, key)
            if value not in (None, [], ""):
                data[key] = value
        return data


def parse_decision(content: Optional[str]) -> InitiationDecision:
    """Read a decision from a model reply.

    Strict JSON first, then the first balanced ``{...}`` object anywhere in
    the text. Anything else becomes a "nothing" decision that carries the
    start of the raw reply.
    """
    content = content or ""
    try:
        data = json.loads(strip_code_fences(content))
        if isinstance(data, dict):
            return InitiationDecision.from_dict(data)
    except json.JSONDecodeError:
        pass

    candidate = find_json_object(content)
    if candidate is None:
        logger.warning(f"Could not extract JSON from initiation response: {content[:200]}")
        return InitiationDecision.fallback(EXTRACTION_FAILED, content)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning(f"Extracted text was not valid JSON: {e}")
        return InitiationDecision.fallback(EXTRACTED_JSON_INVALID, content)

    return InitiationDecision.from_dict(data)
