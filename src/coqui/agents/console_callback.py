"""Rich console callback for the agent loop."""

from __future__ import annotations

from typing import Any, Protocol

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from coqui.models.agent_schemas import AgentRunOutput, ToolCall, ToolResult
from coqui.tools import ToolRegistry

MAX_RESULT_CHARS = 100
MAX_ARG_CHARS = 40

TOOL_ICONS = {
    "read_file": "👁 ",
    "write_file": "📄",
    "edit_file": "✏️ ",
    "delete_file": "🗑 ",
    "list_directory": "📂",
    "grep": "🔍",
    "find_files": "🔎",
    "exec": "💻",
    "python_execute": "🐍",
    "credentials": "🔑",
    "pip": "📦",
    "pypi": "🌐",
    "spawn_agent": "🤖",
    "done": "✅",
}


class AgentCallback(Protocol):
    def on_run_start(self, prompt: str) -> None: ...
    def on_iteration(self, iteration: int, max_iterations: int) -> None: ...
    def on_thinking(self, text: str) -> None: ...
    def on_tool_call(self, call: ToolCall) -> None: ...
    def on_tool_result(self, call: ToolCall, result: ToolResult) -> None: ...
    def on_done(self, output: AgentRunOutput) -> None: ...
    def on_error(self, message: str) -> None: ...
    def on_child_start(self, role: str, model: str) -> None: ...
    def on_child_end(self, role: str) -> None: ...


class NullCallback:
    def on_run_start(self, prompt: str) -> None: ...
    def on_iteration(self, iteration: int, max_iterations: int) -> None: ...
    def on_thinking(self, text: str) -> None: ...
    def on_tool_call(self, call: ToolCall) -> None: ...
    def on_tool_result(self, call: ToolCall, result: ToolResult) -> None: ...
    def on_done(self, output: AgentRunOutput) -> None: ...
    def on_error(self, message: str) -> None: ...
    def on_child_start(self, role: str, model: str) -> None: ...
    def on_child_end(self, role: str) -> None: ...


def _one_line(text: str, limit: int) -> str:
    text = text.replace("\r", " ").replace("\n", " ")
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def format_arguments(arguments: dict[str, Any]) -> str:
    parts = []
    for key, value in arguments.items():
        if isinstance(value, str):
            parts.append(f'{key}: "{_one_line(value, MAX_ARG_CHARS)}"')
        elif isinstance(value, bool):
            parts.append(f"{key}: {'true' if value else 'false'}")
        elif isinstance(value, (int, float)):
            parts.append(f"{key}: {value}")
        elif isinstance(value, (list, dict)):
            parts.append(f"{key}: [...]")
    return ", ".join(parts)


class ConsoleCallback:
    """Streams agent events to the terminal, indenting child agents."""

    def __init__(self, console: Console | None = None, verbose: bool = False) -> None:
        self.console = console or Console()
        self.verbose = verbose
        self.indent_level = 0

    @property
    def _indent(self) -> str:
        return "  " * self.indent_level

    def print_tools(self, registry: ToolRegistry) -> None:
        table = Table(title="Available tools", border_style="dim", show_lines=False)
        table.add_column("Tool", style="bold cyan", no_wrap=True)
        table.add_column("Description", style="dim")
        for tool in registry.list_all():
            icon = TOOL_ICONS.get(tool.name, "🔧")
            params = tool.parameters.get("properties", {})
            table.add_row(f"{icon} {tool.name}({', '.join(params)})", tool.description.splitlines()[0])
        self.console.print(table)
        self.console.print()

    def on_run_start(self, prompt: str) -> None:
        self.console.print(f"{self._indent}[cyan]▶ Agent started[/]")

    def on_iteration(self, iteration: int, max_iterations: int) -> None:
        if self.verbose:
            self.console.print(f"{self._indent}[dim]  iteration {iteration}/{max_iterations}[/]")

    def on_thinking(self, text: str) -> None:
        if self.verbose and text:
            self.console.print(f"{self._indent}[dim]  💭 {escape(_one_line(text, 200))}[/]")

    def on_tool_call(self, call: ToolCall) -> None:
        icon = TOOL_ICONS.get(call.name, "🔧")
        args = escape(format_arguments(call.arguments))
        self.console.print(f"{self._indent}  {icon} [yellow]{call.name}[/][dim]({args})[/]")

    def on_tool_result(self, call: ToolCall, result: ToolResult) -> None:
        color, icon = ("red", "✗") if result.is_error else ("green", "✓")
        content = escape(_one_line(result.content, MAX_RESULT_CHARS))
        self.console.print(f"{self._indent}    [{color}]{icon}[/] [dim]{content}[/]")

    def on_done(self, output: AgentRunOutput) -> None:
        preview = escape(_one_line(output.content, 50))
        self.console.print(f"{self._indent}[green]✓ Done[/] [dim]{preview}[/]")

    def on_error(self, message: str) -> None:
        self.console.print(f"{self._indent}[red]✗ Error: {escape(message)}[/]")

    def on_child_start(self, role: str, model: str) -> None:
        self.console.print(
            f"{self._indent}[blue]\\[{escape(role)}][/] [cyan]Spawning child agent ({escape(model)})...[/]"
        )
        self.indent_level += 1

    def on_child_end(self, role: str) -> None:
        self.indent_level = max(0, self.indent_level - 1)
        self.console.print(f"{self._indent}[blue]└─[/] [dim]Child agent completed[/]")

    def print_response(self, output: AgentRunOutput) -> None:
        stats = f"Iterations: {output.iterations}"
        if output.usage is not None:
            stats += f" | Tokens: {output.usage.total_tokens}"
        self.console.print()
        self.console.print(
            Panel(
                escape(output.content),
                title="[bold green]Assistant",
                subtitle=f"[dim]{stats}",
                border_style="green",
                padding=(0, 1),
            )
        )
