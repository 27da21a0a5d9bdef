"""
Tool Registry.

Maps an agent's enabled tool names to Tool instances for one turn and runs
tool calls on behalf of the providers.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from ..domain.entities import Agent, Chat, ToolCall, ToolDefinition
from .base import Tool

logger = logging.getLogger(__name__)

ToolFactory = Callable[[Agent, Chat], Tool]


class ToolRegistry:
    """Registry of tool factories keyed by tool name.

    Tools are built per turn so they can close over the agent and chat they
    act for.

    Usage:
        registry = ToolRegistry()
        registry.register("web_fetch", lambda agent, chat: WebFetchTool())

        tools = registry.tools_for(agent, chat)
    """

    def __init__(self):
        self._factories: dict[str, ToolFactory] = {}

    def register(self, name: str, factory: ToolFactory) -> None:
        self._factories[name] = factory

    def names(self) -> list[str]:
        return sorted(self._factories)

    def tools_for(self, agent: Agent, chat: Chat) -> list[Tool]:
        """Build the tools the agent has enabled, skipping unknown names."""
        tools: list[Tool] = []
        for name in agent.enabled_tools:
            factory = self._factories.get(name)
            if factory is None:
                logger.warning(f"Agent {agent.id} enables unknown tool '{name}'")
                continue
            tools.append(factory(agent, chat))
        return tools


def find_tool(tools: list[Tool], name: str) -> Optional[Tool]:
    for tool in tools:
        if tool.name == name:
            return tool
    return None


async def execute_tool_call(tool_call: ToolCall, tools: list[Tool]) -> ToolCall:
    """Execute a tool call and populate its result.

    Unknown tools and tool failures become error results for the model
    rather than aborting the turn.

    Args:
        tool_call: Tool call from the model
        tools: Tools available in this turn

    Returns:
        ToolCall with result populated
    """
    logger.debug(f"Executing tool: {tool_call.name}")

    tool = find_tool(tools, tool_call.name)
    if tool is None:
        tool_call.result = {"error": f"Unknown tool: {tool_call.name}"}
        return tool_call

    try:
        tool_call.result = await tool.execute(tool_call.arguments or {})
    except Exception as e:
        logger.warning(f"Tool {tool_call.name} failed: {e}")
        tool_call.result = {"error": str(e)}
    return tool_call


def format_tools_for_llm(
    tools: list[Tool], style: str = "openai"
) -> list[dict[str, Any]]:
    """Format tool definitions for the given provider style."""
    definitions: list[ToolDefinition] = [tool.definition for tool in tools]
    if style == "anthropic":
        return [d.to_anthropic_format() for d in definitions]
    return [d.to_openai_format() for d in definitions]
