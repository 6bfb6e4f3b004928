"""File collaborator for project documents.

Reads and writes whole markdown documents under a project directory.
Writes go through a temp file + fsync + rename so a crash never leaves
a half-written document behind.
"""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from lachesis.engine.errors import DocumentNotFoundError

logger = logging.getLogger(__name__)


def _fsync_dir(project_dir: Path) -> None:
    """Flush the project directory entry after a document is renamed into place.

    Without this a power loss right after a workflow apply can bring back
    the previous Tasks.md or Archive.md even though the rename succeeded.
    Filesystems that refuse directory fsync only get a debug line.
    """
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        fd = os.open(str(project_dir), flags)
    except OSError as exc:
        logger.debug("Cannot open %s for fsync: %s", project_dir, exc)
        return
    try:
        os.fsync(fd)
    except OSError as exc:
        logger.debug("Directory fsync unsupported for %s: %s", project_dir, exc)
    finally:
        os.close(fd)


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Replace one project document (or the CLI state file) in a single step.

    The new text is written to a hidden sibling such as ``.Tasks.md.xxxx.tmp``,
    fsynced and renamed over *path*. Readers see either the old document or
    the new one. A failed write leaves the old document untouched and
    removes the sibling. Missing parent directories are created, which the
    scaffolder relies on for a fresh project folder.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    _fsync_dir(path.parent)


class ProjectFiles:
    """Named-document access rooted at one project directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, name: str) -> Path:
        return self.root / name

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def read(self, name: str) -> str:
        path = self.path_for(name)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise DocumentNotFoundError(name) from None

    def read_optional(self, name: str) -> str | None:
        try:
            return self.read(name)
        except DocumentNotFoundError:
            return None

    def write(self, name: str, content: str) -> None:
        atomic_write_text(self.path_for(name), content)
        logger.info("Wrote %s (%d chars)", self.path_for(name), len(content))
