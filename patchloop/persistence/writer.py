# patchloop/persistence/writer.py
"""
Workspace committer - flushes an overlay snapshot into the project directory.

A commit runs in two phases so it is never half-applied:
    1. Resolve every target and stage every write to a temp file. A failure
       here discards the staged files; the project is untouched.
    2. Move replaced and deleted files aside, then swap the staged files in.
       A failure here puts the moved files back.

Every target is checked against the project root after symlink resolution.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Protocol, Tuple

import aiofiles

from patchloop.core.exceptions import PersistenceError
from patchloop.core.logging import log
from patchloop.persistence.overlay import OverlaySnapshot
from patchloop.utils.path_utils import is_within_root

TMP_SUFFIX = ".tmp"
BACKUP_SUFFIX = ".patchloop.bak"


@dataclass
class CommitReport:
    written: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)


class Committer(Protocol):
    async def commit(self, snapshot: OverlaySnapshot) -> CommitReport:
        ...


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        log("COMMIT", f"⚠️ Could not remove {path}: {e}")


async def stage_file(full_path: Path, text: str) -> Path:
    """
    Write text to a temp file beside full_path and return the temp path.
    The target itself is not touched.
    """
    tmp = full_path.with_name(full_path.name + TMP_SUFFIX)
    try:
        full_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
            await f.write(text)
    except OSError as e:
        _remove_quietly(tmp)
        raise PersistenceError(str(full_path), str(e))
    return tmp


async def write_file_atomic(full_path: Path, text: str) -> None:
    """
    Atomically write text to a file.
    Uses a temporary file and rename to prevent partial writes.
    """
    tmp = await stage_file(full_path, text)
    try:
        os.replace(tmp, full_path)
    except OSError as e:
        _remove_quietly(tmp)
        raise PersistenceError(str(full_path), str(e))


class WorkspaceCommitter:
    """
    Applies deletes and writes under project_root, all or nothing.

    Renames need no separate step: the source is in the snapshot's deletes
    and the target in its writes.
    """

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root)

    def _target(self, path: str) -> Path:
        target = self.project_root / path
        if not is_within_root(self.project_root, target):
            raise PersistenceError(path, "resolves outside the project root")
        return target

    async def commit(self, snapshot: OverlaySnapshot) -> CommitReport:
        try:
            self.project_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(str(self.project_root), str(e))

        deletes = [(path, self._target(path)) for path in snapshot.deletes]
        writes = [(path, self._target(path), content) for path, content in sorted(snapshot.writes.items())]

        # Phase 1: stage
        staged: List[Tuple[str, Path, Path]] = []
        try:
            for path, target, content in writes:
                if target.is_dir():
                    raise PersistenceError(path, "target is a directory")
                staged.append((path, target, await stage_file(target, content)))
        except PersistenceError:
            for _, _, tmp in staged:
                _remove_quietly(tmp)
            log("COMMIT", f"❌ Staging failed, {len(staged)} staged files discarded")
            raise

        # Phase 2: swap
        report = CommitReport()
        moved: List[Tuple[Path, Path]] = []
        placed: List[Path] = []
        try:
            for path, target in deletes:
                if target.is_file():
                    moved.append((target, self._move_aside(target)))
                    report.deleted.append(path)
            for path, target, _ in staged:
                if target.is_file():
                    moved.append((target, self._move_aside(target)))
            for path, target, tmp in staged:
                os.replace(tmp, target)
                placed.append(target)
                report.written.append(path)
        except OSError as e:
            self._roll_back(staged, placed, moved)
            raise PersistenceError(str(self.project_root), f"commit rolled back: {e}")

        for _, backup in moved:
            _remove_quietly(backup)
        for path in report.deleted:
            log("COMMIT", f"🗑️ Deleted: {path}")
        for path, _, _ in staged:
            log("COMMIT", f"✅ Written: {path} ({len(snapshot.writes[path])} chars)")
        return report

    @staticmethod
    def _move_aside(target: Path) -> Path:
        backup = target.with_name(target.name + BACKUP_SUFFIX)
        os.replace(target, backup)
        return backup

    @staticmethod
    def _roll_back(
        staged: List[Tuple[str, Path, Path]],
        placed: List[Path],
        moved: List[Tuple[Path, Path]],
    ) -> None:
        for target in placed:
            _remove_quietly(target)
        for _, _, tmp in staged:
            _remove_quietly(tmp)
        for target, backup in reversed(moved):
            try:
                os.replace(backup, target)
            except OSError as e:
                log("COMMIT", f"⚠️ Could not restore {target}: {e}")
        log("COMMIT", f"↩️ Rolled back: {len(placed)} writes undone, {len(moved)} files restored")
