"""
Persistence - base tree views, the overlay, and the workspace committer.
"""
from .base_tree import BaseTree, DiskBaseTree, MemoryBaseTree
from .overlay import OverlayStore, OverlaySnapshot
from .writer import CommitReport, Committer, WorkspaceCommitter, stage_file, write_file_atomic

__all__ = [
    "BaseTree",
    "DiskBaseTree",
    "MemoryBaseTree",
    "OverlayStore",
    "OverlaySnapshot",
    "CommitReport",
    "Committer",
    "WorkspaceCommitter",
    "stage_file",
    "write_file_atomic",
]
