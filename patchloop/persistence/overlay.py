# patchloop/persistence/overlay.py
"""
Overlay Store

Pending writes, deletes and renames layered over a read-only base tree.

Reads resolve overlay first: a path in `deletes` is absent even if the base
tree has it, a path in `writes` shadows the base content. The overlay is
committed or discarded as a whole at turn end.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from patchloop.persistence.base_tree import BaseTree, MemoryBaseTree


@dataclass
class OverlaySnapshot:
    """Point-in-time copy handed to preview/commit collaborators."""
    writes: Dict[str, str] = field(default_factory=dict)
    deletes: List[str] = field(default_factory=list)
    renames: Dict[str, str] = field(default_factory=dict)


class OverlayStore:
    """
    Layered filesystem for one session.

    Mutated only by the ChangeApplier; everything else reads.
    """

    def __init__(self, base: Optional[BaseTree] = None):
        self.base = base if base is not None else MemoryBaseTree()
        self.writes: Dict[str, str] = {}
        self.deletes: Set[str] = set()
        self.renames: Dict[str, str] = {}
        # Paths whose write fully closed this turn
        self.closed_writes: Set[str] = set()

    # ─────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────

    def file_exists(self, path: str) -> bool:
        if path in self.writes:
            return True
        if path in self.deletes:
            return False
        return self.base.exists(path)

    def read_file(self, path: str) -> Optional[str]:
        if path in self.writes:
            return self.writes[path]
        if path in self.deletes:
            return None
        return self.base.read(path)

    def get_virtual_files(self) -> Dict[str, str]:
        """Pending content by path (copy)."""
        return dict(self.writes)

    def get_deleted_files(self) -> List[str]:
        """Paths that will disappear on commit, sorted."""
        return sorted(self.deletes)

    def snapshot(self) -> OverlaySnapshot:
        return OverlaySnapshot(
            writes=self.get_virtual_files(),
            deletes=self.get_deleted_files(),
            renames=dict(self.renames),
        )

    def is_empty(self) -> bool:
        return not (self.writes or self.deletes or self.renames)

    # ─────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────

    def clear(self) -> None:
        """Drop every pending mutation (commit done or turn discarded)."""
        self.writes.clear()
        self.deletes.clear()
        self.renames.clear()
        self.closed_writes.clear()

    def __repr__(self) -> str:
        return (
            f"OverlayStore(writes={len(self.writes)}, deletes={len(self.deletes)}, "
            f"renames={len(self.renames)})"
        )
