from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from .models import ToolResult


ToolHandler = Callable[[dict[str, Any]], ToolResult]


@dataclass
class ToolDefinition:
    name: str
    handler: ToolHandler
    declaration: dict[str, Any] = field(default_factory=dict)


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> None:
        self._tools[tool.name] = tool

    def resolve(self, name: str) -> ToolDefinition:
        tool = self._tools.get(name)
        if not tool:
            raise KeyError(f"Tool not found: {name}")
        return tool

    def list_names(self) -> list[str]:
        return sorted(self._tools.keys())

    def declarations(self) -> list[dict[str, Any]]:
        return [self._tools[name].declaration for name in self.list_names() if self._tools[name].declaration]
