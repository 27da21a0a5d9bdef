"""Tools agents can call during a turn."""

from .base import Tool
from .registry import ToolRegistry, execute_tool_call, find_tool, format_tools_for_llm

__all__ = [
    "Tool",
    "ToolRegistry",
    "execute_tool_call",
    "find_tool",
    "format_tools_for_llm",
]
