"""Allowlisted shell command tool."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from coqui.models.agent_schemas import ToolResult
from coqui.tools import Tool

logger = logging.getLogger(__name__)

ORCHESTRATOR_COMMANDS = ("python", "git", "grep", "find", "cat", "head", "tail", "wc", "ls")
CODER_COMMANDS = ("python", "git", "grep", "find", "cat", "head", "tail", "wc")

MAX_OUTPUT_CHARS = 32768


def create_shell_tool(
    work_dir: Path,
    allowed_commands: tuple[str, ...] = ORCHESTRATOR_COMMANDS,
    timeout: int = 60,
) -> Tool:
    """`exec` tool: runs one allowlisted program without a shell, cwd = work_dir."""

    def run(args: dict) -> ToolResult:
        command = (args.get("command") or "").strip()
        if not command:
            return ToolResult.error("Command is required.")
        try:
            argv = shlex.split(command)
        except ValueError as e:
            return ToolResult.error(f"Cannot parse command: {e}")

        program = Path(argv[0]).name
        if program not in allowed_commands:
            return ToolResult.error(
                f"Command '{program}' is not allowed. Allowed: {', '.join(allowed_commands)}"
            )

        logger.info("exec: %s (cwd=%s)", command, work_dir)
        try:
            proc = subprocess.run(
                argv,
                cwd=work_dir,
                capture_output=True,
                text=True,
                timeout=timeout,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired:
            return ToolResult.error(f"Command timed out after {timeout}s.")
        except FileNotFoundError:
            return ToolResult.error(f"Command not found: {program}")

        output = (proc.stdout or "") + (proc.stderr or "")
        if len(output) > MAX_OUTPUT_CHARS:
            output = output[:MAX_OUTPUT_CHARS] + "\n--- output truncated ---"
        body = f"{output.rstrip()}\n\nExit code: {proc.returncode}".lstrip()
        if proc.returncode != 0:
            return ToolResult.error(body)
        return ToolResult.success(body)

    return Tool(
        name="exec",
        description=(
            "Run a shell command from the project root. "
            f"Only these programs are allowed: {', '.join(allowed_commands)}. "
            "Pipes and redirection are not supported."
        ),
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Command line, e.g. 'git status'"},
            },
            "required": ["command"],
        },
        execute=run,
    )
