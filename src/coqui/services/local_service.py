from __future__ import annotations

import logging
import os
from pathlib import Path

from coqui.services.file_service import FileService

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE_KB = 100

# Workspace files the model may never read or overwrite directly. The
# credential store is managed by the credentials tool only.
PROTECTED_FILES = (".env",)


class WorkspaceViolation(PermissionError):
    """Raised when a path resolves outside the workspace root."""


class ProtectedFileViolation(PermissionError):
    """Raised when a path resolves to a protected workspace file."""


class ReadOnlyViolation(PermissionError):
    """Raised when a read-only service is asked to modify a file."""


class LocalService(FileService):
    """Filesystem access confined to a single workspace directory."""

    def __init__(
        self,
        work_dir: Path | None = None,
        read_only: bool = False,
        max_file_size_kb: int = DEFAULT_MAX_FILE_SIZE_KB,
    ) -> None:
        self.work_dir = (work_dir or Path.cwd()).resolve()
        self.read_only = read_only
        self.max_file_size_kb = max_file_size_kb
        self.protected_paths = frozenset(self.work_dir / name for name in PROTECTED_FILES)

    def _resolve(self, path: str) -> Path:
        """Resolve path relative to work_dir, refusing anything outside it."""
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = self.work_dir / p
        literal = Path(os.path.normpath(p))
        p = p.resolve()
        if p != self.work_dir and self.work_dir not in p.parents:
            raise WorkspaceViolation(f"Path '{path}' is outside the workspace ({self.work_dir})")
        if p in self.protected_paths or literal in self.protected_paths:
            raise ProtectedFileViolation(
                f"Access to '{path}' is not allowed: use the credentials tool to manage secrets"
            )
        return p

    def _check_writable(self, path: str) -> None:
        if self.read_only:
            raise ReadOnlyViolation(f"Cannot modify '{path}': filesystem access is read-only")

    # --- FileService interface ---

    def read_file(self, path: str) -> str:
        p = self._resolve(path)
        size = p.stat().st_size
        if size > self.max_file_size_kb * 1024:
            raise ValueError(
                f"{path} is {size / 1024:.1f} KB, over the {self.max_file_size_kb} KB limit"
            )
        return p.read_text(encoding="utf-8")

    def write_file(self, path: str, content: str) -> None:
        self._check_writable(path)
        p = self._resolve(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")
        logger.info("Written: %s (%d lines)", p, content.count("\n") + 1)

    def edit_file(self, path: str, old_text: str, new_text: str) -> None:
        self._check_writable(path)
        p = self._resolve(path)
        content = p.read_text(encoding="utf-8")
        if old_text not in content:
            raise ValueError(f"old_text not found in {path}")
        content = content.replace(old_text, new_text, 1)
        p.write_text(content, encoding="utf-8")

    def delete_file(self, path: str) -> None:
        self._check_writable(path)
        p = self._resolve(path)
        if p == self.work_dir:
            raise WorkspaceViolation("Refusing to delete the workspace root")
        p.unlink()
        logger.info("Deleted: %s", p)

    def list_directory(self, path: str = ".") -> list[str]:
        p = self._resolve(path)
        return sorted(
            str(entry.relative_to(p)) + ("/" if entry.is_dir() else "") for entry in p.iterdir()
        )

    def file_exists(self, path: str) -> bool:
        return self._resolve(path).exists()
