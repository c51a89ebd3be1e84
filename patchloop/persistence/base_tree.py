# patchloop/persistence/base_tree.py
"""
Read-only views of the canonical project tree.

The core never writes through these; only the commit collaborator mutates the
project directory.
"""
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from patchloop.core.config import settings
from patchloop.core.logging import log


class BaseTree(Protocol):
    """What the overlay needs from the canonical tree."""

    root: Optional[Path]

    def read(self, path: str) -> Optional[str]:
        ...

    def exists(self, path: str) -> bool:
        ...

    def list_files(self) -> List[str]:
        ...


class DiskBaseTree:
    """Project directory on disk, addressed by normalized relative paths."""

    def __init__(self, root: Path, ignored_dirs: Optional[Iterable[str]] = None):
        self.root = Path(root)
        self.ignored_dirs = set(ignored_dirs if ignored_dirs is not None else settings.typecheck.ignored_dirs)

    def read(self, path: str) -> Optional[str]:
        """Read a file and return its contents, or None if not found."""
        full_path = self.root / path
        if not full_path.is_file():
            return None
        try:
            return full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log("OVERLAY", f"❌ Base read failed: {path} - {e}")
            return None

    def exists(self, path: str) -> bool:
        return (self.root / path).is_file()

    def list_files(self) -> List[str]:
        """
        All files under root, skipping ignored directories and dotfiles.
        """
        if not self.root.exists():
            return []
        files: List[str] = []
        for item in sorted(self.root.rglob("*")):
            rel = item.relative_to(self.root)
            if any(part in self.ignored_dirs or part.startswith(".") for part in rel.parts):
                continue
            if item.is_file():
                files.append(rel.as_posix())
        return files


class MemoryBaseTree:
    """In-memory base tree for previews and tests."""

    def __init__(self, files: Optional[Dict[str, str]] = None, root: Optional[Path] = None):
        self._files = dict(files or {})
        self.root = root

    def read(self, path: str) -> Optional[str]:
        return self._files.get(path)

    def exists(self, path: str) -> bool:
        return path in self._files

    def list_files(self) -> List[str]:
        return sorted(self._files)
