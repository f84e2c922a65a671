"""Interactive approval gate for dangerous tool calls."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Protocol

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm

from coqui.models.agent_schemas import ExecutionDecision

logger = logging.getLogger(__name__)

WILDCARD = "*"
DEFAULT_ACTION_KEYS = ("action", "command")
MAX_DISPLAY_CHARS = 120


class ExecutionPolicy(Protocol):
    def should_execute(self, tool_name: str, arguments: dict[str, Any]) -> ExecutionDecision: ...


class AllowAllPolicy:
    def should_execute(self, tool_name: str, arguments: dict[str, Any]) -> ExecutionDecision:
        return ExecutionDecision.allow()


def format_argument(value: Any, max_length: int = MAX_DISPLAY_CHARS) -> str:
    """Render one argument value on a single line for the approval prompt."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        text = value.replace("\r", " ").replace("\n", " ")
    elif isinstance(value, (list, dict)):
        try:
            text = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError):
            return "[...]"
    elif value is None:
        return "null"
    else:
        return "(complex)"
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


class InteractiveApprovalPolicy:
    """Asks the user before running gated tools.

    `gated_tools` maps a tool name to the actions that need approval, or to
    ["*"] to gate every call. The action is read from the first argument key
    in `action_keys` (per tool, default "action" then "command"); a listed
    tool called without any action value is gated as well.
    """

    def __init__(
        self,
        gated_tools: dict[str, list[str]] | None = None,
        action_keys: dict[str, list[str]] | None = None,
        console: Console | None = None,
        confirm: Callable[[str], bool] | None = None,
    ) -> None:
        self.gated_tools = gated_tools or {}
        self.action_keys = action_keys or {}
        self.console = console or Console()
        self._confirm = confirm or self._ask

    def _ask(self, question: str) -> bool:
        return Confirm.ask(question, console=self.console, default=False)

    def requires_approval(self, tool_name: str, arguments: dict[str, Any]) -> bool:
        if tool_name not in self.gated_tools:
            return False

        gated_actions = self.gated_tools[tool_name]
        if WILDCARD in gated_actions:
            return True

        action = self._action_value(tool_name, arguments)
        if action is None:
            return True
        return action in gated_actions

    def _action_value(self, tool_name: str, arguments: dict[str, Any]) -> str | None:
        for key in self.action_keys.get(tool_name, DEFAULT_ACTION_KEYS):
            value = arguments.get(key)
            if value is not None:
                return str(value)
        return None

    def should_execute(self, tool_name: str, arguments: dict[str, Any]) -> ExecutionDecision:
        if not self.requires_approval(tool_name, arguments):
            return ExecutionDecision.allow()

        self.console.print()
        self.console.print("[yellow]⚠ Approval required[/]")
        self.console.print(f"[dim]Tool:[/] [cyan]{tool_name}[/]")
        for key, value in arguments.items():
            self.console.print(f"[dim]{escape(str(key))}:[/] {escape(format_argument(value))}", highlight=False)

        if self._confirm("Allow this action?"):
            logger.info("User approved %s", tool_name)
            return ExecutionDecision.allow()
        logger.info("User denied %s", tool_name)
        return ExecutionDecision.deny(f"User denied execution of '{tool_name}'")
