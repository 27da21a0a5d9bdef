"""Base class for tools an agent can call mid-turn."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ..domain.entities import ToolDefinition


class Tool(ABC):
    """A callable capability exposed to the model.

    Subclasses describe themselves through ``definition`` and do the work in
    ``execute``. Results must be JSON-serializable; failures may be raised
    and are reported back to the model as an error result.
    """

    @property
    @abstractmethod
    def definition(self) -> ToolDefinition:
        pass

    @property
    def name(self) -> str:
        return self.definition.name

    @abstractmethod
    async def execute(self, arguments: dict[str, Any]) -> Any:
        pass
