"""Package management (pip) and package discovery (PyPI) tools."""

from __future__ import annotations

import fnmatch
import json
import logging
import re
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path

import requests

from coqui.models.agent_schemas import ToolResult
from coqui.tools import Tool

logger = logging.getLogger(__name__)

# Whole frameworks that would drag in a conflicting stack.
DENYLIST_PATTERNS = [
    "django",
    "django-*",
    "flask",
    "fastapi",
    "tensorflow*",
    "torch",
]

PYPI_URL = "https://pypi.org/pypi"
PIP_TIMEOUT = 300
MAX_OUTPUT_CHARS = 16000

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*")


def package_name(spec: str) -> str:
    """`requests[socks]>=2.0` -> `requests`."""
    match = _NAME_RE.match(spec.strip())
    return match.group(0).lower() if match else ""


def check_denylist(spec: str) -> str | None:
    name = package_name(spec)
    for pattern in DENYLIST_PATTERNS:
        if fnmatch.fnmatch(name, pattern):
            return f"Package '{name}' is blocked by the denylist (matches '{pattern}')."
    return None


def _run_pip(args: list[str], work_dir: Path) -> subprocess.CompletedProcess:
    cmd = [sys.executable, "-m", "pip", *args, "--disable-pip-version-check", "--no-input"]
    logger.info("pip: %s", " ".join(args))
    return subprocess.run(cmd, cwd=work_dir, capture_output=True, text=True, timeout=PIP_TIMEOUT)


def _format(proc: subprocess.CompletedProcess) -> ToolResult:
    output = ((proc.stdout or "") + (proc.stderr or "")).strip()
    if len(output) > MAX_OUTPUT_CHARS:
        output = output[:MAX_OUTPUT_CHARS] + "\n--- output truncated ---"
    if proc.returncode != 0:
        return ToolResult.error(f"{output}\n\nExit code: {proc.returncode}")
    return ToolResult.success(output or "(no output)")


def backup_environment(work_dir: Path, backup_root: Path) -> Path | None:
    """Snapshot `pip freeze` before a mutating operation."""
    proc = _run_pip(["freeze"], work_dir)
    if proc.returncode != 0:
        logger.warning("pip freeze failed, skipping backup: %s", proc.stderr.strip())
        return None
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    target = backup_root / stamp
    target.mkdir(parents=True, exist_ok=True)
    (target / "requirements.txt").write_text(proc.stdout, encoding="utf-8")
    return target


def create_pip_tool(project_root: Path, workspace: Path) -> Tool:
    backup_root = workspace / "backups" / "pip"

    def install(package: str, upgrade: bool) -> ToolResult:
        if not package:
            return ToolResult.error("Package is required for install.")
        denied = check_denylist(package)
        if denied:
            return ToolResult.error(denied)
        backup = backup_environment(project_root, backup_root)
        args = ["install", package]
        if upgrade:
            args.insert(1, "--upgrade")
        result = _format(_run_pip(args, project_root))
        if backup and not result.is_error:
            return ToolResult.success(f"{result.content}\n\nBackup: {backup}")
        return result

    def uninstall(package: str) -> ToolResult:
        if not package:
            return ToolResult.error("Package is required for uninstall.")
        backup = backup_environment(project_root, backup_root)
        result = _format(_run_pip(["uninstall", "-y", package_name(package)], project_root))
        if backup and not result.is_error:
            return ToolResult.success(f"{result.content}\n\nBackup: {backup}")
        return result

    def list_installed() -> ToolResult:
        proc = _run_pip(["list", "--format=json"], project_root)
        if proc.returncode != 0:
            return _format(proc)
        packages = json.loads(proc.stdout or "[]")
        if not packages:
            return ToolResult.success("No packages installed.")
        lines = [f"- {p['name']} {p['version']}" for p in packages]
        return ToolResult.success(f"## Installed packages ({len(packages)})\n\n" + "\n".join(lines))

    def run(args: dict) -> ToolResult:
        action = args.get("action") or ""
        package = (args.get("package") or "").strip()
        if action == "install":
            return install(package, bool(args.get("upgrade", False)))
        if action == "uninstall":
            return uninstall(package)
        if action == "show":
            if not package:
                return ToolResult.error("Package is required for show.")
            return _format(_run_pip(["show", package_name(package)], project_root))
        if action == "list":
            return list_installed()
        if action == "outdated":
            return _format(_run_pip(["list", "--outdated"], project_root))
        if action == "check":
            return _format(_run_pip(["check"], project_root))
        return ToolResult.error(f"Unknown action: {action}")

    return Tool(
        name="pip",
        description=(
            "Manage Python packages in the interpreter that runs python_execute.\n"
            "Actions: install (backs up `pip freeze` first), uninstall (backs up first), "
            "show, list, outdated, check. Whole frameworks are blocked by a denylist. "
            "Use the `pypi` tool to evaluate a package before installing it."
        ),
        parameters={
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": ["install", "uninstall", "show", "list", "outdated", "check"],
                    "description": "The pip action to perform",
                },
                "package": {
                    "type": "string",
                    "description": "Requirement spec, e.g. 'httpx' or 'httpx>=0.27'",
                },
                "upgrade": {"type": "boolean", "description": "Pass --upgrade to install"},
            },
            "required": ["action"],
        },
        execute=run,
    )


def create_pypi_tool(session: requests.Session | None = None, timeout: int = 15) -> Tool:
    http = session or requests.Session()

    def fetch(package: str) -> dict | None:
        resp = http.get(f"{PYPI_URL}/{package}/json", timeout=timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def details(package: str) -> ToolResult:
        data = fetch(package)
        if data is None:
            return ToolResult.error(f"Package '{package}' not found on PyPI.")
        info = data.get("info") or {}
        urls = info.get("project_urls") or {}
        lines = [
            f"## {info.get('name', package)} {info.get('version', '')}",
            "",
            info.get("summary") or "(no summary)",
            "",
            f"- License: {info.get('license') or 'unknown'}",
            f"- Requires Python: {info.get('requires_python') or 'any'}",
            f"- Home page: {info.get('home_page') or urls.get('Homepage') or 'n/a'}",
        ]
        requires = info.get("requires_dist") or []
        if requires:
            lines.append(f"- Dependencies: {', '.join(requires[:20])}")
        return ToolResult.success("\n".join(lines))

    def versions(package: str) -> ToolResult:
        data = fetch(package)
        if data is None:
            return ToolResult.error(f"Package '{package}' not found on PyPI.")
        releases = data.get("releases") or {}
        published = [
            (version, files[0].get("upload_time", "")) for version, files in releases.items() if files
        ]
        published.sort(key=lambda item: item[1], reverse=True)
        lines = [f"- {version} ({uploaded[:10]})" for version, uploaded in published[:20]]
        latest = (data.get("info") or {}).get("version", "")
        return ToolResult.success(f"## {package} releases (latest {latest})\n\n" + "\n".join(lines))

    def run(args: dict) -> ToolResult:
        action = args.get("action") or ""
        package = package_name(args.get("package") or "")
        if not package:
            return ToolResult.error("Package is required.")
        try:
            if action == "details":
                return details(package)
            if action == "versions":
                return versions(package)
        except requests.RequestException as e:
            return ToolResult.error(f"PyPI request failed: {e}")
        return ToolResult.error(f"Unknown action: {action}")

    return Tool(
        name="pypi",
        description=(
            "Look up packages on PyPI before installing them. "
            "Actions: details (summary, license, dependencies), versions (recent releases)."
        ),
        parameters={
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": ["details", "versions"]},
                "package": {"type": "string", "description": "Package name, e.g. 'httpx'"},
            },
            "required": ["action", "package"],
        },
        execute=run,
    )
