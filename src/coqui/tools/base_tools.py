"""File operation tools backed by a FileService."""

from __future__ import annotations

import fnmatch
import re
from pathlib import Path

from coqui.models.agent_schemas import ToolResult
from coqui.services.file_service import FileService
from coqui.tools import Tool

MAX_GREP_MATCHES = 200
MAX_FIND_RESULTS = 500

WRITE_TOOL_NAMES = {"write_file", "edit_file", "delete_file"}


def create_filesystem_tools(service: FileService, read_only: bool = False) -> list[Tool]:
    """Workspace file tools. Read-only mode leaves out every tool that writes."""

    def read_file(args: dict) -> ToolResult:
        path = args["path"]
        content = service.read_file(path)
        lines = content.splitlines()
        offset = args.get("offset", 0) or 0
        limit = args.get("limit")
        if offset or limit:
            end = offset + limit if limit else len(lines)
            lines = lines[offset:end]
        numbered = [f"{i + offset + 1:>4} | {line}" for i, line in enumerate(lines)]
        return ToolResult.success(f"File: {path}\n" + "\n".join(numbered))

    def write_file(args: dict) -> ToolResult:
        path = args["path"]
        service.write_file(path, args["content"])
        return ToolResult.success(f"Wrote {path}")

    def edit_file(args: dict) -> ToolResult:
        path = args["path"]
        old_text = args["old_text"]
        new_text = args["new_text"]
        if args.get("replace_all", False):
            content = service.read_file(path)
            if old_text not in content:
                return ToolResult.error(f"old_text not found in {path}")
            count = content.count(old_text)
            service.write_file(path, content.replace(old_text, new_text))
            return ToolResult.success(f"Replaced {count} occurrence(s) in {path}")
        service.edit_file(path, old_text, new_text)
        return ToolResult.success(f"Successfully edited {path}")

    def delete_file(args: dict) -> ToolResult:
        path = args["path"]
        if not service.file_exists(path):
            return ToolResult.error(f"File not found: {path}")
        service.delete_file(path)
        return ToolResult.success(f"Deleted {path}")

    def list_directory(args: dict) -> ToolResult:
        path = args.get("path") or "."
        entries = service.list_directory(path)
        return ToolResult.success("\n".join(entries) if entries else "(empty directory)")

    def grep(args: dict) -> ToolResult:
        pattern = args["pattern"]
        search_path = args.get("path") or "."
        include = args.get("include")
        try:
            regex = re.compile(pattern)
        except re.error:
            regex = re.compile(re.escape(pattern))

        root = _resolve_path(service, search_path)
        work = _work_dir(service)
        matches: list[str] = []
        protected = getattr(service, "protected_paths", frozenset())
        for fpath in _walk_files(root, include, protected):
            try:
                text = fpath.read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            rel = str(fpath.relative_to(work))
            for i, line in enumerate(text.splitlines(), 1):
                if regex.search(line):
                    matches.append(f"{rel}:{i}: {line.rstrip()}")
                    if len(matches) >= MAX_GREP_MATCHES:
                        matches.append(f"... (truncated at {MAX_GREP_MATCHES} matches)")
                        return ToolResult.success("\n".join(matches))
        if not matches:
            return ToolResult.success(f"No matches for '{pattern}'")
        return ToolResult.success("\n".join(matches))

    def find_files(args: dict) -> ToolResult:
        pattern = args["pattern"]
        root = _resolve_path(service, args.get("path") or ".")
        work = _work_dir(service)
        results: list[str] = []
        for fpath in sorted(root.rglob("*")):
            if fpath.is_file() and fnmatch.fnmatch(fpath.name, pattern):
                results.append(str(fpath.relative_to(work)))
            if len(results) >= MAX_FIND_RESULTS:
                results.append(f"... (truncated at {MAX_FIND_RESULTS} results)")
                break
        if not results:
            return ToolResult.success(f"No files matching '{pattern}'")
        return ToolResult.success("\n".join(results))

    tools = [
        Tool(
            name="read_file",
            description="Read a file from the workspace. Use offset/limit for large files.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path, relative to the workspace"},
                    "offset": {"type": "integer", "description": "Starting line (0-based)"},
                    "limit": {"type": "integer", "description": "Max lines to return"},
                },
                "required": ["path"],
            },
            execute=read_file,
        ),
        Tool(
            name="list_directory",
            description="List files and directories in the given workspace path.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Directory path (default: '.')"},
                },
                "required": [],
            },
            execute=list_directory,
        ),
        Tool(
            name="grep",
            description=(
                "Search file contents for a pattern (regex or literal). "
                "Returns matching lines as file:line:text. "
                "Use include to filter by glob (e.g. '*.py')."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "pattern": {"type": "string", "description": "Regex or literal string to search for"},
                    "path": {"type": "string", "description": "Directory or file to search in (default: '.')"},
                    "include": {"type": "string", "description": "Glob to filter files, e.g. '*.py'"},
                },
                "required": ["pattern"],
            },
            execute=grep,
        ),
        Tool(
            name="find_files",
            description="Find files by name pattern (glob), searching recursively from the given path.",
            parameters={
                "type": "object",
                "properties": {
                    "pattern": {"type": "string", "description": "Glob pattern, e.g. '*.py', 'test_*'"},
                    "path": {"type": "string", "description": "Directory to search in (default: '.')"},
                },
                "required": ["pattern"],
            },
            execute=find_files,
        ),
    ]
    if read_only:
        return tools

    return tools + [
        Tool(
            name="write_file",
            description="Create or overwrite a workspace file with the given content.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path to write"},
                    "content": {"type": "string", "description": "File content"},
                },
                "required": ["path", "content"],
            },
            execute=write_file,
        ),
        Tool(
            name="edit_file",
            description=(
                "Replace an exact text snippet in a file with new text. "
                "Set replace_all=true to replace every occurrence."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path to edit"},
                    "old_text": {"type": "string", "description": "Exact text to find and replace"},
                    "new_text": {"type": "string", "description": "Replacement text"},
                    "replace_all": {
                        "type": "boolean",
                        "description": "Replace all occurrences instead of just the first (default: false)",
                    },
                },
                "required": ["path", "old_text", "new_text"],
            },
            execute=edit_file,
        ),
        Tool(
            name="delete_file",
            description="Delete a file from the workspace.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path to delete"},
                },
                "required": ["path"],
            },
            execute=delete_file,
        ),
    ]


def _work_dir(service: FileService) -> Path:
    return getattr(service, "work_dir", Path.cwd())


def _resolve_path(service: FileService, path: str) -> Path:
    """Resolve a path against the service work_dir, rejecting escapes."""
    resolver = getattr(service, "_resolve", None)
    if resolver is not None:
        return resolver(path)
    p = Path(path)
    if p.is_absolute():
        return p
    return _work_dir(service) / p


def _walk_files(root: Path, include: str | None = None, skip: frozenset = frozenset()) -> list[Path]:
    """Recursively collect files, optionally filtered by glob."""
    if root.is_file():
        return [root]
    files: list[Path] = []
    for fpath in sorted(root.rglob("*")):
        if not fpath.is_file() or fpath in skip or fpath.resolve() in skip:
            continue
        if include and not fnmatch.fnmatch(fpath.name, include):
            continue
        files.append(fpath)
    return files
