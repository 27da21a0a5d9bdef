"""
Tests for provider selection, thinking configuration and the model registry.
"""

import httpx
import pytest

from helix.agent.config import AgentSettings
from helix.agent.exceptions import (
    ConfigurationError,
    MissingCapabilityError,
    UnsupportedFeatureError,
)
from helix.agent.providers import (
    AnthropicProvider,
    ModelRegistry,
    OpenAICompatibleProvider,
    ProviderRoute,
    ProviderSelector,
    effort_for_budget,
)
from helix.agent.providers.base import THINKING_MAX_TOKENS_MARGIN


@pytest.fixture
def all_keys():
    return AgentSettings(
        anthropic_api_key="sk-ant-test",
        openai_api_key="sk-openai-test",
        openrouter_api_key="sk-or-test",
    )


@pytest.fixture
def openrouter_only():
    return AgentSettings(openrouter_api_key="sk-or-test")


# ============================================
# Routing
# ============================================


class TestSelect:
    def test_anthropic_model_goes_direct_with_key(self, all_keys):
        selector = ProviderSelector(all_keys, ModelRegistry())
        route = selector.select("anthropic/claude-sonnet-4.5")
        assert route == ProviderRoute("anthropic", "claude-sonnet-4-5")

    def test_openai_model_goes_direct_with_key(self, all_keys):
        selector = ProviderSelector(all_keys, ModelRegistry())
        route = selector.select("openai/gpt-5")
        assert route == ProviderRoute("openai", "gpt-5")

    def test_without_direct_key_routes_through_openrouter(self, openrouter_only):
        selector = ProviderSelector(openrouter_only, ModelRegistry())
        route = selector.select("anthropic/claude-sonnet-4.5")
        assert route == ProviderRoute("openrouter", "anthropic/claude-sonnet-4.5")

    def test_placeholder_key_counts_as_missing(self):
        settings = AgentSettings(anthropic_api_key="<your-key>", openrouter_api_key="sk-or")
        selector = ProviderSelector(settings, ModelRegistry())
        assert selector.select("anthropic/claude-sonnet-4.5").provider == "openrouter"

    def test_other_namespaces_route_through_openrouter(self, all_keys):
        selector = ProviderSelector(all_keys, ModelRegistry())
        route = selector.select("google/gemini-2.5-pro")
        assert route == ProviderRoute("openrouter", "google/gemini-2.5-pro")

    def test_unknown_direct_model_after_refresh_uses_openrouter(self, all_keys):
        registry = ModelRegistry()
        registry._catalogue = {"anthropic/claude-opus-4.5"}
        selector = ProviderSelector(all_keys, registry)

        route = selector.select("anthropic/claude-sonnet-4.5")
        assert route.provider == "openrouter"


# ============================================
# Thinking
# ============================================


class TestEffortBuckets:
    @pytest.mark.parametrize(
        "budget,effort",
        [(1, "low"), (2000, "low"), (2001, "medium"), (15000, "medium"), (15001, "high")],
    )
    def test_buckets(self, budget, effort):
        assert effort_for_budget(budget) == effort


class TestConfigureThinking:
    def test_structured_budget_for_anthropic(self, all_keys):
        selector = ProviderSelector(all_keys, ModelRegistry())
        route = selector.select("anthropic/claude-sonnet-4.5")
        session = selector.create_session(route)

        selector.configure_thinking(session, 8000, route.provider)

        assert session.thinking == {"budget_tokens": 8000}
        assert session.params == {}

    def test_openai_fallback_uses_effort_and_completion_ceiling(self, all_keys):
        selector = ProviderSelector(all_keys, ModelRegistry())
        route = selector.select("openai/gpt-5")
        session = selector.create_session(route)

        selector.configure_thinking(session, 8000, route.provider)

        assert session.thinking is None
        assert session.params == {
            "reasoning_effort": "medium",
            "max_completion_tokens": 8000 + THINKING_MAX_TOKENS_MARGIN,
        }

    def test_openrouter_fallback_uses_reasoning_effort(self, openrouter_only):
        selector = ProviderSelector(openrouter_only, ModelRegistry())
        route = selector.select("google/gemini-2.5-pro")
        session = selector.create_session(route)

        selector.configure_thinking(session, 20000, route.provider)

        assert session.params["reasoning"] == {"effort": "high"}
        assert session.params["max_tokens"] == 20000 + THINKING_MAX_TOKENS_MARGIN

    def test_anthropic_fallback_when_structured_unavailable(self, all_keys):
        selector = ProviderSelector(all_keys, ModelRegistry())
        session = selector.create_session(ProviderRoute("openrouter", "x"))

        selector.configure_thinking(session, 3000, "anthropic")

        assert session.params["thinking"] == {"type": "enabled", "budget_tokens": 3000}
        assert session.params["max_tokens"] == 3000 + THINKING_MAX_TOKENS_MARGIN

    def test_unknown_provider_propagates_original_error(self, all_keys):
        selector = ProviderSelector(all_keys, ModelRegistry())
        session = selector.create_session(ProviderRoute("openrouter", "x"))

        with pytest.raises(UnsupportedFeatureError):
            selector.configure_thinking(session, 3000, "ollama")

    def test_claude_thinking_requires_anthropic_key(self, openrouter_only):
        selector = ProviderSelector(openrouter_only, ModelRegistry())

        with pytest.raises(MissingCapabilityError) as exc:
            selector.require_thinking_capability("anthropic/claude-sonnet-4.5")
        assert exc.value.capability == "anthropic_thinking"

        selector.require_thinking_capability("google/gemini-2.5-pro")


# ============================================
# Provider construction
# ============================================


class TestCreateProvider:
    def test_builds_integration_per_route(self, all_keys):
        selector = ProviderSelector(all_keys, ModelRegistry())

        assert isinstance(
            selector.create_provider(ProviderRoute("anthropic", "claude-sonnet-4-5")),
            AnthropicProvider,
        )
        provider = selector.create_provider(ProviderRoute("openrouter", "google/gemini"))
        assert isinstance(provider, OpenAICompatibleProvider)
        assert provider.provider_name == "openrouter"

    def test_missing_openrouter_key_is_configuration_error(self):
        selector = ProviderSelector(AgentSettings(), ModelRegistry())

        with pytest.raises(ConfigurationError) as exc:
            selector.create_provider(ProviderRoute("openrouter", "google/gemini"))
        assert exc.value.missing_keys == ["OPENROUTER_API_KEY"]

    def test_session_carries_structured_flag(self, all_keys):
        selector = ProviderSelector(all_keys, ModelRegistry())

        assert selector.create_session(ProviderRoute("anthropic", "c")).structured_thinking
        assert not selector.create_session(ProviderRoute("openai", "g")).structured_thinking


# ============================================
# Model registry
# ============================================


class TestModelRegistry:
    def test_resolves_known_and_derived_ids(self):
        registry = ModelRegistry()
        assert registry.resolve("anthropic/claude-opus-4.5") == "claude-opus-4-5"
        assert registry.resolve("anthropic/claude-3.7-sonnet") == "claude-3-7-sonnet"
        assert registry.resolve("mistral/large") is None

    @pytest.mark.asyncio
    async def test_refresh_loads_catalogue(self):
        def handler(request):
            assert request.url.path.endswith("/models")
            return httpx.Response(200, json={"data": [{"id": "openai/gpt-5"}]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        registry = ModelRegistry(http_client=client)

        await registry.refresh()

        assert registry.refresh_count == 1
        assert registry.resolve("openai/gpt-5") == "gpt-5"
        assert registry.resolve("anthropic/claude-sonnet-4.5") is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty_catalogue_keeps_previous(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"data": []}))
        )
        registry = ModelRegistry(http_client=client)

        await registry.refresh()

        assert registry.resolve("anthropic/claude-sonnet-4.5") == "claude-sonnet-4-5"
        await client.aclose()
