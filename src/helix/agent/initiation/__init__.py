"""Self-initiated agent conversations."""

from .decision import InitiationAction, InitiationDecision, parse_decision
from .engine import InitiationEngine
from .prompt import InitiationContext, build_initiation_prompt

__all__ = [
    "InitiationAction",
    "InitiationDecision",
    "parse_decision",
    "InitiationEngine",
    "InitiationContext",
    "build_initiation_prompt",
]
