"""Persistent notes in the workspace MEMORY.md file.

Each memory is one markdown bullet. Lines that are not bullets (headings,
notes added by hand) are left alone when the file is rewritten.
"""

from __future__ import annotations

import logging
from pathlib import Path

from coqui.models.agent_schemas import ToolResult
from coqui.tools import Tool

logger = logging.getLogger(__name__)

MEMORY_FILENAME = "MEMORY.md"
MEMORY_HEADER = "# Memory\n"
BULLET = "- "


def _normalize(text: str) -> str:
    return " ".join(text.split())


def _entries(lines: list[str]) -> list[str]:
    return [line[len(BULLET):].strip() for line in lines if line.startswith(BULLET)]


def create_memory_tool(workspace: Path) -> Tool:
    memory_path = workspace / MEMORY_FILENAME

    def read_lines() -> list[str]:
        if not memory_path.is_file():
            return []
        return memory_path.read_text(encoding="utf-8").splitlines()

    def write_lines(lines: list[str]) -> None:
        memory_path.parent.mkdir(parents=True, exist_ok=True)
        memory_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    def remember(content: str) -> ToolResult:
        content = _normalize(content)
        if not content:
            return ToolResult.error("Content is required for remember action.")
        lines = read_lines() or [MEMORY_HEADER.rstrip(), ""]
        if content in _entries(lines):
            return ToolResult.success(f"Already remembered: {content}")
        lines.append(BULLET + content)
        write_lines(lines)
        logger.info("Remembered: %s", content)
        return ToolResult.success(f"Remembered: {content}")

    def recall(query: str) -> ToolResult:
        entries = _entries(read_lines())
        if query:
            needle = query.lower()
            entries = [entry for entry in entries if needle in entry.lower()]
        if not entries:
            return ToolResult.success(f"No memories matching '{query}'." if query else "No memories stored.")
        return ToolResult.success("\n".join(f"{i}. {entry}" for i, entry in enumerate(entries, 1)))

    def forget(query: str) -> ToolResult:
        if not query:
            return ToolResult.error("Query is required for forget action.")
        needle = query.lower()
        lines = read_lines()
        kept = [
            line for line in lines
            if not (line.startswith(BULLET) and needle in line[len(BULLET):].lower())
        ]
        removed = len(lines) - len(kept)
        if not removed:
            return ToolResult.error(f"No memories matching '{query}'.")
        write_lines(kept)
        logger.info("Forgot %d memory entries matching %r", removed, query)
        return ToolResult.success(f"Forgot {removed} memory entr{'y' if removed == 1 else 'ies'}.")

    def run(args: dict) -> ToolResult:
        action = args.get("action") or ""
        if action == "remember":
            return remember(args.get("content") or "")
        if action == "recall":
            return recall((args.get("query") or "").strip())
        if action == "forget":
            return forget((args.get("query") or "").strip())
        return ToolResult.error(f"Unknown action: {action}")

    return Tool(
        name="memory",
        description=(
            "Long-term memory kept in the workspace MEMORY.md file and shared across sessions.\n"
            "Actions: remember (store a one-line fact), recall (list memories, optionally "
            "filtered by query), forget (remove every memory containing query). "
            "Never store secrets here: use the credentials tool."
        ),
        parameters={
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": ["remember", "recall", "forget"],
                    "description": "The memory action to perform",
                },
                "content": {"type": "string", "description": "The fact to store. Required for remember."},
                "query": {
                    "type": "string",
                    "description": "Case-insensitive text to match. Optional for recall, required for forget.",
                },
            },
            "required": ["action"],
        },
        execute=run,
    )
