"""Credential storage in the workspace .env file.

Values never go back to the model: it only ever sees key names. Scripts run
by `python_execute` read them with `os.environ["KEY"]`.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from coqui.models.agent_schemas import ToolResult
from coqui.tools import Tool

logger = logging.getLogger(__name__)

ENV_FILENAME = ".env"
ENV_HEADER = "# Coqui workspace credentials, managed by the credentials tool"

_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_NEEDS_QUOTES_RE = re.compile(r"[\s#\"'\\]")


def parse_env(text: str) -> dict[str, str]:
    """Parse KEY=VALUE lines. Comments and blank lines are skipped and one
    pair of matching surrounding quotes is stripped from the value."""
    entries: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        if key:
            entries[key] = value
    return entries


def dump_env(entries: dict[str, str]) -> str:
    lines = [ENV_HEADER]
    for key, value in entries.items():
        if _NEEDS_QUOTES_RE.search(value):
            lines.append(f'{key}="{value}"')
        else:
            lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n"


def load_env_file(path: Path) -> dict[str, str]:
    if not path.is_file():
        return {}
    return parse_env(path.read_text(encoding="utf-8"))


def save_env_file(path: Path, entries: dict[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_env(entries), encoding="utf-8")
    os.chmod(path, 0o600)


def create_credential_tool(workspace: Path) -> Tool:
    env_path = workspace / ENV_FILENAME

    def set_credential(key: str, value: str) -> ToolResult:
        if not key:
            return ToolResult.error("Key name is required for set action.")
        if not value:
            return ToolResult.error("Value is required for set action.")
        if not _KEY_RE.match(key):
            return ToolResult.error(
                f"Invalid key name: '{key}'. Use UPPER_SNAKE_CASE (e.g. CLOUDFLARE_API_TOKEN)."
            )
        if "\n" in value or "\r" in value:
            return ToolResult.error("Credential values cannot contain newlines.")
        entries = load_env_file(env_path)
        entries[key] = value
        save_env_file(env_path, entries)
        logger.info("Stored credential %s", key)
        return ToolResult.success(
            f"Credential '{key}' has been saved. Use os.environ['{key}'] in your Python code to access it."
        )

    def get_credential(key: str) -> ToolResult:
        if not key:
            return ToolResult.error("Key name is required for get action.")
        if key not in load_env_file(env_path):
            return ToolResult.error(f"Credential '{key}' not found.")
        return ToolResult.success(
            f"Credential '{key}' exists. Use os.environ['{key}'] in your Python code to access it. "
            "The value is not shown for security."
        )

    def list_credentials() -> ToolResult:
        entries = load_env_file(env_path)
        if not entries:
            return ToolResult.success("No credentials stored.")
        rows = "\n".join(f"| {key} | ✓ set |" for key in entries)
        return ToolResult.success(
            "## Stored Credentials\n\n| Key | Status |\n|-----|--------|\n"
            f"{rows}\n\nUse `os.environ['KEY_NAME']` in Python code to access values."
        )

    def delete_credential(key: str) -> ToolResult:
        if not key:
            return ToolResult.error("Key name is required for delete action.")
        entries = load_env_file(env_path)
        if key not in entries:
            return ToolResult.error(f"Credential '{key}' not found.")
        del entries[key]
        save_env_file(env_path, entries)
        return ToolResult.success(f"Credential '{key}' has been deleted.")

    def run(args: dict) -> ToolResult:
        action = args.get("action") or ""
        key = args.get("key") or ""
        if action == "set":
            return set_credential(key, args.get("value") or "")
        if action == "get":
            return get_credential(key)
        if action == "list":
            return list_credentials()
        if action == "delete":
            return delete_credential(key)
        return ToolResult.error(f"Unknown action: {action}")

    return Tool(
        name="credentials",
        description=(
            "Manage API keys and secrets for installed packages. Credentials live in the "
            "workspace .env file and are loaded automatically by python_execute.\n"
            "Actions: set (store key=value), get (check a key exists), list (key names), "
            "delete (remove a key). Values are NEVER returned: read them in code with "
            "os.environ['KEY_NAME'] and never hardcode them."
        ),
        parameters={
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": ["set", "get", "list", "delete"],
                    "description": "The credential action to perform",
                },
                "key": {
                    "type": "string",
                    "description": "Credential key name (e.g. CLOUDFLARE_API_TOKEN). Required for set, get, delete.",
                },
                "value": {"type": "string", "description": "Credential value. Required for set only."},
            },
            "required": ["action"],
        },
        execute=run,
    )
