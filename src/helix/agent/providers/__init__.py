"""LLM provider implementations and routing."""

from .base import BaseLLMProvider, LLMProviderConfig, classify_status_error
from .anthropic import AnthropicProvider
from .openai import OpenAICompatibleProvider
from .registry import ModelRegistry
from .selector import ProviderRoute, ProviderSelector, effort_for_budget

__all__ = [
    "BaseLLMProvider",
    "LLMProviderConfig",
    "classify_status_error",
    "AnthropicProvider",
    "OpenAICompatibleProvider",
    "ModelRegistry",
    "ProviderRoute",
    "ProviderSelector",
    "effort_for_budget",
]
