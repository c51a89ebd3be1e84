# patchloop/orchestration/change_applier.py
"""
Change Applier

Applies batches of closed directives to an OverlayStore.

ORDERING (per batch, stream order kept inside each class):
    1. deletes
    2. renames
    3. writes
    4. add-dependency (touches no files)

A write that recreates a path deleted in the same batch therefore wins, and a
rename may target a path a delete just vacated.

IDEMPOTENCY:
Re-applying a closed write with identical content is a no-op, and so is a
delete of a path already gone. The applier keeps its applied history, so
`replay` of a turn's directive log skips what already landed and applies the
rest in log order.

ERRORS:
Per-directive failures are collected on the BatchResult. One bad directive
never blocks the rest of the batch.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Set

from patchloop.core.exceptions import PatchLoopError, SourceNotFound
from patchloop.core.logging import log
from patchloop.core.types import (
    AddDependencyDirective,
    DeleteDirective,
    ParsedDirective,
    RenameDirective,
    WriteDirective,
)
from patchloop.persistence.overlay import OverlayStore

APPLY_ORDER = (DeleteDirective, RenameDirective, WriteDirective, AddDependencyDirective)


@dataclass
class BatchResult:
    """Outcome of one apply_batch call."""
    applied: List[Any] = field(default_factory=list)
    skipped: List[Any] = field(default_factory=list)
    errors: List[PatchLoopError] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.applied)


class ChangeApplier:
    """Mutates one OverlayStore; tracks the turn's unioned dependency set."""

    def __init__(self, overlay: OverlayStore, session_id: str = ""):
        self.overlay = overlay
        self.session_id = session_id
        self.dependencies: Set[str] = set()
        # Directives that changed the overlay, in applied order
        self.history: List[Any] = []

    # ─────────────────────────────────────────────────────────
    # Batches
    # ─────────────────────────────────────────────────────────

    def apply_batch(self, batch: Iterable[Any]) -> BatchResult:
        """
        Apply directives (or ParsedDirectives) in the fixed class order.
        """
        directives = [item.directive if isinstance(item, ParsedDirective) else item for item in batch]
        result = BatchResult()

        for directive_class in APPLY_ORDER:
            for directive in directives:
                if isinstance(directive, directive_class):
                    self._apply_into(result, directive)

        if result.applied or result.errors:
            log(
                "APPLY",
                f"📝 Batch applied: {len(result.applied)} changed, "
                f"{len(result.skipped)} no-op, {len(result.errors)} failed",
                session_id=self.session_id,
            )
        return result

    def replay(self, directives: Iterable[Any]) -> BatchResult:
        """
        Re-apply a directive log in log order.

        The leading run of the log that matches what this applier already
        applied is skipped; the rest is applied one directive at a time. So
        replaying a turn's own log leaves its overlay as it was, and a log
        cut short by a failure picks up where it stopped.
        """
        directives = [item.directive if isinstance(item, ParsedDirective) else item for item in directives]
        done = 0
        while done < min(len(directives), len(self.history)) and directives[done] == self.history[done]:
            done += 1

        result = BatchResult(skipped=directives[:done])
        for directive in directives[done:]:
            self._apply_into(result, directive)
        if result.applied or result.errors:
            log(
                "APPLY",
                f"🔁 Replay: {len(result.applied)} changed, {len(result.skipped)} no-op, "
                f"{len(result.errors)} failed",
                session_id=self.session_id,
            )
        return result

    def _apply_into(self, result: BatchResult, directive: Any) -> None:
        try:
            changed = self.apply(directive)
        except SourceNotFound as e:
            log("APPLY", f"❌ {e.message}", session_id=self.session_id)
            result.errors.append(e)
            return
        if changed:
            result.applied.append(directive)
            self.history.append(directive)
        else:
            result.skipped.append(directive)

    def apply(self, directive: Any) -> bool:
        """Apply one directive. Returns False when it changed nothing."""
        if isinstance(directive, DeleteDirective):
            return self.apply_delete(directive.path)
        if isinstance(directive, RenameDirective):
            return self.apply_rename(directive.from_path, directive.to_path)
        if isinstance(directive, WriteDirective):
            return self.apply_write(directive.path, directive.content)
        if isinstance(directive, AddDependencyDirective):
            return self.apply_add_dependency(directive.packages)
        raise TypeError(f"Unknown directive type: {type(directive).__name__}")

    # ─────────────────────────────────────────────────────────
    # Single operations
    # ─────────────────────────────────────────────────────────

    def apply_delete(self, path: str) -> bool:
        overlay = self.overlay
        if path in overlay.deletes:
            return False
        overlay.deletes.add(path)
        overlay.writes.pop(path, None)
        overlay.closed_writes.discard(path)
        # Whatever was moved here is gone now
        self._forget_renames(lambda source, target: target == path)
        log("OVERLAY", f"🗑️ Pending delete: {path}")
        return True

    def apply_rename(self, from_path: str, to_path: str) -> bool:
        overlay = self.overlay
        if from_path == to_path:
            return False

        if from_path in overlay.writes:
            content = overlay.writes.pop(from_path)
        elif from_path in overlay.deletes:
            raise SourceNotFound(from_path, to_path)
        else:
            content = overlay.base.read(from_path)
            if content is None:
                raise SourceNotFound(from_path, to_path)

        overlay.writes[to_path] = content
        overlay.deletes.discard(to_path)
        overlay.deletes.add(from_path)
        overlay.closed_writes.discard(from_path)

        # a -> b then b -> c collapses to a -> c
        origins = [source for source, target in overlay.renames.items() if target == from_path]
        self._forget_renames(lambda source, target: source == to_path or target == from_path)
        for source in origins or [from_path]:
            if source != to_path:
                overlay.renames[source] = to_path
        log("OVERLAY", f"🔀 Pending rename: {from_path} -> {to_path}")
        return True

    def apply_write(self, path: str, content: str) -> bool:
        overlay = self.overlay
        if path in overlay.closed_writes and overlay.writes.get(path) == content:
            return False
        overlay.writes[path] = content
        overlay.deletes.discard(path)
        overlay.closed_writes.add(path)
        # A recreated source no longer counts as moved away
        self._forget_renames(lambda source, target: source == path)
        log("OVERLAY", f"✍️ Pending write: {path} ({len(content)} chars)")
        return True

    def apply_add_dependency(self, packages: Iterable[str]) -> bool:
        new_packages = set(packages) - self.dependencies
        if not new_packages:
            return False
        self.dependencies |= new_packages
        log("APPLY", f"📦 Dependencies added: {' '.join(sorted(new_packages))}", session_id=self.session_id)
        return True

    def _forget_renames(self, predicate: Callable[[str, str], bool]) -> None:
        renames = self.overlay.renames
        for source in [s for s, t in renames.items() if predicate(s, t)]:
            del renames[source]
