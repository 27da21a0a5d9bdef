"""
Provider selection and reasoning configuration.

Models under a namespace with a direct integration (``anthropic/``,
``openai/``) go straight to that vendor when its key is configured and the
registry knows the model. Everything else goes through OpenRouter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..config import AgentSettings
from ..domain.entities import ModelResponse, ModelSession
from ..domain.ports import IModelRegistry
from ..exceptions import ConfigurationError, MissingCapabilityError, UnsupportedFeatureError
from .anthropic import AnthropicProvider
from .base import THINKING_MAX_TOKENS_MARGIN, BaseLLMProvider, LLMProviderConfig
from .openai import OpenAICompatibleProvider

logger = logging.getLogger(__name__)

ANTHROPIC = "anthropic"
OPENAI = "openai"
OPENROUTER = "openrouter"


def effort_for_budget(budget: int) -> str:
    """Bucket a token budget into a reasoning-effort level."""
    if budget <= 2000:
        return "low"
    if budget <= 15000:
        return "medium"
    return "high"


@dataclass(frozen=True)
class ProviderRoute:
    """Where a model request goes.

    Attributes:
        provider: Provider slug
        model_id: Id in the form that provider expects
    """

    provider: str
    model_id: str


class ProviderSelector:
    """Routes model ids to providers and builds ready-to-use sessions.

    Usage:
        selector = ProviderSelector(settings, registry)
        route = selector.select(agent.model_id)
        session = selector.create_session(route, system_prompt=agent.system_prompt)
        if agent.thinking_budget:
            selector.configure_thinking(session, agent.thinking_budget, route.provider)
        provider = selector.create_provider(route)
    """

    def __init__(self, settings: AgentSettings, registry: IModelRegistry):
        self.settings = settings
        self.registry = registry

    def select(self, model_id: str) -> ProviderRoute:
        """Pick the provider for a logical model id."""
        if model_id.startswith("anthropic/") and self.settings.anthropic_available:
            native = self.registry.resolve(model_id)
            if native:
                return ProviderRoute(ANTHROPIC, native)

        if model_id.startswith("openai/") and self.settings.openai_available:
            native = self.registry.resolve(model_id)
            if native:
                return ProviderRoute(OPENAI, native)

        return ProviderRoute(OPENROUTER, model_id)

    def require_thinking_capability(self, model_id: str) -> None:
        """Reasoning on Claude models needs the direct integration.

        Raises:
            MissingCapabilityError: When the Anthropic key is not configured
        """
        if model_id.startswith("anthropic/") and not self.settings.anthropic_available:
            raise MissingCapabilityError(
                "Extended thinking for Claude models requires an Anthropic API key. "
                "Add one or turn thinking off for this agent.",
                capability="anthropic_thinking",
                details={"model_id": model_id},
            )

    def create_session(self, route: ProviderRoute, **kwargs) -> ModelSession:
        kwargs.setdefault("max_tokens", self.settings.max_tokens)
        provider_class = self._provider_class(route.provider)
        return ModelSession(
            model_id=route.model_id,
            provider=route.provider,
            structured_thinking=provider_class.supports_structured_thinking,
            **kwargs,
        )

    def configure_thinking(
        self, session: ModelSession, budget: int, provider: str
    ) -> ModelSession:
        """Enable reasoning with the given token budget.

        Tries the structured budget first. Integrations without it get raw
        request parameters for their provider family instead.
        """
        try:
            return session.with_thinking(budget)
        except UnsupportedFeatureError as e:
            ceiling = budget + THINKING_MAX_TOKENS_MARGIN

            if provider == ANTHROPIC:
                return session.with_params(
                    thinking={"type": "enabled", "budget_tokens": budget},
                    max_tokens=ceiling,
                )
            if provider == OPENAI:
                return session.with_params(
                    reasoning_effort=effort_for_budget(budget),
                    max_completion_tokens=ceiling,
                )
            if provider == OPENROUTER:
                return session.with_params(
                    reasoning={"effort": effort_for_budget(budget)},
                    max_tokens=ceiling,
                )

            logger.error(f"No thinking fallback for provider {provider}")
            raise e

    def create_provider(self, route: ProviderRoute) -> BaseLLMProvider:
        """Build the provider instance for a route."""
        settings = self.settings
        common = {"max_tokens": settings.max_tokens, "max_tool_rounds": settings.max_tool_rounds}

        if route.provider == ANTHROPIC:
            return AnthropicProvider(
                LLMProviderConfig(api_key=settings.anthropic_api_key, **common)
            )
        if route.provider == OPENAI:
            return OpenAICompatibleProvider(
                LLMProviderConfig(api_key=settings.openai_api_key, **common),
                provider_name=OPENAI,
            )
        if route.provider == OPENROUTER:
            if not settings.openrouter_available:
                raise ConfigurationError(
                    "OpenRouter API key is not configured",
                    missing_keys=["OPENROUTER_API_KEY"],
                )
            return OpenAICompatibleProvider(
                LLMProviderConfig(
                    api_key=settings.openrouter_api_key,
                    base_url=settings.openrouter_base_url,
                    **common,
                ),
                provider_name=OPENROUTER,
            )
        raise ConfigurationError(f"Unknown provider: {route.provider}")

    async def ask(
        self,
        model_id: str,
        prompt: str,
        system_prompt: Optional[str] = None,
        tools: Optional[list[Any]] = None,
    ) -> ModelResponse:
        """One-shot request on behalf of an agent with no live audience.

        Used by the memory sweeps and the initiation engine. Tool calls are
        executed and fed back until the model answers.
        """
        route = self.select(model_id)
        session = self.create_session(
            route,
            messages=[{"role": "user", "content": prompt}],
            system_prompt=system_prompt,
            tools=tools or [],
        )
        provider = self.create_provider(route)
        return await provider.complete(session)

    @staticmethod
    def _provider_class(provider: str) -> type[BaseLLMProvider]:
        if provider == ANTHROPIC:
            return AnthropicProvider
        return OpenAICompatibleProvider
