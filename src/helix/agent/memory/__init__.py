"""Agent memory lifecycle.

Provides:
- Consolidation of idle group chats into journal and core memories
- Reflection that promotes lasting journal entries to core
- Consent-gated refinement of the core ledger
- Rendering of an agent's memories for prompts
"""

from .consolidator import Consolidator, chunk_messages, parse_extraction
from .context import core_token_usage, format_memory_context, load_memory_context
from .parsing import find_json_object, parse_json_object, strip_code_fences
from .refinement_tool import MAX_MUTATIONS, RefinementTool
from .refiner import Refiner, is_consent
from .reflector import Reflector, parse_promotions

__all__ = [
    "Consolidator",
    "chunk_messages",
    "parse_extraction",
    "core_token_usage",
    "format_memory_context",
    "load_memory_context",
    "find_json_object",
    "parse_json_object",
    "strip_code_fences",
    "MAX_MUTATIONS",
    "RefinementTool",
    "Refiner",
    "is_consent",
    "Reflector",
    "parse_promotions",
]
