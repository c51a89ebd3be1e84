# patchloop/validation/typecheck.py
"""
Typecheck collaborator contract.

The controller hands the collaborator a TypecheckRequest describing the
overlay; the collaborator materializes base + overlay wherever it likes and
returns Problems. A crash or timeout of the collaborator must surface as an
exception (TypecheckCollaboratorUnavailable), never as a Problem.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from patchloop.core.types import Problem
from patchloop.persistence.base_tree import BaseTree, MemoryBaseTree
from patchloop.persistence.overlay import OverlayStore


@dataclass(frozen=True)
class TypecheckRequest:
    """Overlay description handed to the typechecker. Never mutated."""
    project_root: Optional[Path]
    writes: Dict[str, str] = field(default_factory=dict)
    deletes: List[str] = field(default_factory=list)
    renames: Dict[str, str] = field(default_factory=dict)
    base: BaseTree = field(default_factory=MemoryBaseTree, compare=False, repr=False)

    @classmethod
    def from_overlay(cls, overlay: OverlayStore) -> "TypecheckRequest":
        snapshot = overlay.snapshot()
        return cls(
            project_root=getattr(overlay.base, "root", None),
            writes=snapshot.writes,
            deletes=snapshot.deletes,
            renames=snapshot.renames,
            base=overlay.base,
        )

    def materialized_files(self) -> Dict[str, str]:
        """Effective tree: base minus deletes, with overlay writes on top."""
        deleted = set(self.deletes)
        files: Dict[str, str] = {}
        for path in self.base.list_files():
            if path in deleted or path in self.writes:
                continue
            content = self.base.read(path)
            if content is not None:
                files[path] = content
        files.update(self.writes)
        return files

    def materialize_into(self, directory: Path) -> Dict[str, str]:
        """
        Write the effective tree under directory. Neither base nor overlay
        is touched. Returns what was written.
        """
        files = self.materialized_files()
        for path, content in files.items():
            target = directory / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return files


class TypecheckCollaborator(Protocol):
    async def check(self, request: TypecheckRequest) -> List[Problem]:
        ...
