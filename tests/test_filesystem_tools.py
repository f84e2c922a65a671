"""Tests for the workspace filesystem tools and LocalService confinement."""

from __future__ import annotations

from pathlib import Path

import pytest

from coqui.models.agent_schemas import ToolCall
from coqui.services.local_service import (
    LocalService,
    ProtectedFileViolation,
    ReadOnlyViolation,
    WorkspaceViolation,
)
from coqui.tools import ToolRegistry
from coqui.tools.base_tools import WRITE_TOOL_NAMES, create_filesystem_tools


def _setup(tmp_path: Path) -> Path:
    """Create a sample workspace structure."""
    ws = tmp_path / "ws"
    ws.mkdir()
    (ws / "app.py").write_text(
        "class Validator:\n"
        "    def validate(self, data):\n"
        "        pass\n"
        "\n"
        "def helper():\n"
        "    return 42\n"
    )
    (ws / "utils.py").write_text(
        "import os\n"
        "def helper():\n"
        "    return os.getcwd()\n"
    )
    sub = ws / "sub"
    sub.mkdir()
    (sub / "mod.py").write_text("# empty module\n")
    (sub / "data.txt").write_text("some data line\nanother line\n")
    return ws


def _registry(ws: Path, read_only: bool = False) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_many(create_filesystem_tools(LocalService(work_dir=ws, read_only=read_only), read_only))
    return registry


def _run(registry: ToolRegistry, name: str, **arguments):
    return registry.execute(ToolCall(id="t1", name=name, arguments=arguments))


class TestGrep:
    def test_basic_search(self, tmp_path: Path):
        reg = _registry(_setup(tmp_path))
        result = _run(reg, "grep", pattern="def helper")
        assert "app.py:5: def helper():" in result.content
        assert "utils.py:2: def helper():" in result.content

    def test_regex_pattern(self, tmp_path: Path):
        reg = _registry(_setup(tmp_path))
        result = _run(reg, "grep", pattern=r"class \w+")
        assert "app.py:1:" in result.content
        assert "Validator" in result.content

    def test_include_filter(self, tmp_path: Path):
        reg = _registry(_setup(tmp_path))
        result = _run(reg, "grep", pattern="line", include="*.txt")
        assert "sub/data.txt" in result.content
        assert "app.py" not in result.content

    def test_invalid_regex_falls_back_to_literal(self, tmp_path: Path):
        ws = _setup(tmp_path)
        (ws / "odd.txt").write_text("value = f(x\n")
        result = _run(_registry(ws), "grep", pattern="f(x")
        assert "odd.txt:1:" in result.content

    def test_no_matches(self, tmp_path: Path):
        result = _run(_registry(_setup(tmp_path)), "grep", pattern="nonexistent_thing")
        assert result.content == "No matches for 'nonexistent_thing'"

    def test_single_file(self, tmp_path: Path):
        result = _run(_registry(_setup(tmp_path)), "grep", pattern="helper", path="utils.py")
        assert "utils.py:2:" in result.content
        assert "app.py" not in result.content

    def test_path_outside_workspace(self, tmp_path: Path):
        result = _run(_registry(_setup(tmp_path)), "grep", pattern="x", path="..")
        assert result.is_error
        assert "outside the workspace" in result.content


class TestFileTools:
    def test_read_file_numbered(self, tmp_path: Path):
        result = _run(_registry(_setup(tmp_path)), "read_file", path="utils.py")
        assert result.content.startswith("File: utils.py")
        assert "   2 | def helper():" in result.content

    def test_read_file_offset_limit(self, tmp_path: Path):
        result = _run(_registry(_setup(tmp_path)), "read_file", path="app.py", offset=4, limit=1)
        assert "   5 | def helper():" in result.content
        assert "Validator" not in result.content

    def test_write_and_edit(self, tmp_path: Path):
        ws = _setup(tmp_path)
        reg = _registry(ws)
        assert not _run(reg, "write_file", path="new/hello.py", content="print('a')\nprint('a')\n").is_error
        assert (ws / "new" / "hello.py").exists()
        _run(reg, "edit_file", path="new/hello.py", old_text="'a'", new_text="'b'")
        assert (ws / "new" / "hello.py").read_text() == "print('b')\nprint('a')\n"
        result = _run(reg, "edit_file", path="new/hello.py", old_text="print", new_text="log", replace_all=True)
        assert "2 occurrence" in result.content

    def test_edit_missing_text(self, tmp_path: Path):
        result = _run(_registry(_setup(tmp_path)), "edit_file", path="app.py", old_text="nope", new_text="x")
        assert result.is_error
        assert "old_text not found" in result.content

    def test_delete_file(self, tmp_path: Path):
        ws = _setup(tmp_path)
        reg = _registry(ws)
        assert not _run(reg, "delete_file", path="utils.py").is_error
        assert not (ws / "utils.py").exists()
        assert _run(reg, "delete_file", path="utils.py").is_error

    def test_list_directory(self, tmp_path: Path):
        result = _run(_registry(_setup(tmp_path)), "list_directory")
        assert result.content.splitlines() == ["app.py", "sub/", "utils.py"]

    def test_find_files(self, tmp_path: Path):
        result = _run(_registry(_setup(tmp_path)), "find_files", pattern="*.py")
        assert result.content.splitlines() == ["app.py", "sub/mod.py", "utils.py"]

    def test_write_outside_workspace_rejected(self, tmp_path: Path):
        ws = _setup(tmp_path)
        result = _run(_registry(ws), "write_file", path="../escape.txt", content="x")
        assert result.is_error
        assert not (tmp_path / "escape.txt").exists()

    def test_absolute_path_outside_rejected(self, tmp_path: Path):
        result = _run(_registry(_setup(tmp_path)), "read_file", path="/etc/hostname")
        assert result.is_error


class TestReadOnly:
    def test_write_tools_omitted(self, tmp_path: Path):
        names = set(_registry(_setup(tmp_path), read_only=True).names())
        assert names.isdisjoint(WRITE_TOOL_NAMES)
        assert {"read_file", "list_directory", "grep", "find_files"} <= names

    def test_service_refuses_writes(self, tmp_path: Path):
        service = LocalService(work_dir=_setup(tmp_path), read_only=True)
        with pytest.raises(ReadOnlyViolation):
            service.write_file("x.txt", "x")
        with pytest.raises(ReadOnlyViolation):
            service.delete_file("app.py")


class TestLocalService:
    def test_resolve_escape(self, tmp_path: Path):
        service = LocalService(work_dir=_setup(tmp_path))
        with pytest.raises(WorkspaceViolation):
            service._resolve("../../etc/passwd")

    def test_refuses_root_delete(self, tmp_path: Path):
        service = LocalService(work_dir=_setup(tmp_path))
        with pytest.raises(WorkspaceViolation):
            service.delete_file(".")

    def test_max_file_size(self, tmp_path: Path):
        ws = _setup(tmp_path)
        (ws / "big.txt").write_text("x" * 3000)
        service = LocalService(work_dir=ws, max_file_size_kb=1)
        with pytest.raises(ValueError):
            service.read_file("big.txt")


class TestCredentialFile:
    def _workspace(self, tmp_path: Path) -> Path:
        ws = _setup(tmp_path)
        (ws / ".env").write_text("API_TOKEN=super-secret-value\n")
        return ws

    def test_read_file_refused(self, tmp_path: Path):
        reg = _registry(self._workspace(tmp_path))
        for path in (".env", "./.env", "sub/../.env"):
            result = _run(reg, "read_file", path=path)
            assert result.is_error
            assert "super-secret-value" not in result.content
            assert "credentials tool" in result.content

    def test_grep_skips_env(self, tmp_path: Path):
        reg = _registry(self._workspace(tmp_path))
        result = _run(reg, "grep", pattern="super-secret")
        assert not result.is_error
        assert "No matches" in result.content

    def test_grep_on_env_refused(self, tmp_path: Path):
        result = _run(_registry(self._workspace(tmp_path)), "grep", pattern="API", path=".env")
        assert result.is_error
        assert "super-secret-value" not in result.content

    def test_symlink_to_env_refused(self, tmp_path: Path):
        ws = self._workspace(tmp_path)
        (ws / "creds.txt").symlink_to(ws / ".env")
        reg = _registry(ws)
        assert _run(reg, "read_file", path="creds.txt").is_error
        assert "super-secret-value" not in _run(reg, "grep", pattern="super-secret").content

    def test_write_file_refused(self, tmp_path: Path):
        ws = self._workspace(tmp_path)
        result = _run(_registry(ws), "write_file", path=".env", content="API_TOKEN=other\n")
        assert result.is_error
        assert (ws / ".env").read_text() == "API_TOKEN=super-secret-value\n"

    def test_service_raises(self, tmp_path: Path):
        service = LocalService(work_dir=self._workspace(tmp_path))
        with pytest.raises(ProtectedFileViolation):
            service.read_file(".env")
