"""Tool dispatch table for the agent loop."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from coqui.models.agent_schemas import ToolCall, ToolResult

logger = logging.getLogger(__name__)


@dataclass
class Tool:
    name: str
    description: str
    parameters: dict[str, Any]
    execute: Callable[[dict[str, Any]], ToolResult]

    def required(self) -> list[str]:
        return list(self.parameters.get("required", []))


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def register_many(self, tools: list[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> Tool:
        return self._tools[name]

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def list_all(self) -> list[Tool]:
        return list(self._tools.values())

    def to_openai_tools(self) -> list[dict[str, Any]]:
        result = []
        for tool in self._tools.values():
            result.append(
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
            )
        return result

    def execute(self, call: ToolCall) -> ToolResult:
        """Run one tool call. Always returns a result tagged with the call id."""
        tool = self._tools.get(call.name)
        if tool is None:
            return ToolResult.error(f"Unknown tool '{call.name}'", call.id)

        missing = [key for key in tool.required() if key not in call.arguments]
        if missing:
            return ToolResult.error(
                f"Missing required argument(s) for '{call.name}': {', '.join(missing)}",
                call.id,
            )

        try:
            result = tool.execute(call.arguments)
        except Exception as e:
            logger.error("Tool '%s' failed: %s", call.name, e, exc_info=True)
            return ToolResult.error(f"Error executing '{call.name}': {type(e).__name__}: {e}", call.id)
        return result.with_call_id(call.id)
