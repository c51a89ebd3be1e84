# patchloop/core/__init__.py
"""
Core module - configuration, logging, exceptions and shared types.
"""
from .config import settings
from .exceptions import (
    PatchLoopError,
    PathEscape,
    MalformedDirective,
    SourceNotFound,
    TypecheckCollaboratorUnavailable,
    InvalidTransition,
    CommitRefused,
    SessionConflict,
    SessionNotFound,
    PersistenceError,
)
from .types import (
    WriteDirective,
    RenameDirective,
    DeleteDirective,
    AddDependencyDirective,
    Directive,
    ParsedDirective,
    Problem,
    TurnStatus,
    FailureReason,
    TurnResult,
)

__all__ = [
    # Config
    "settings",
    # Exceptions
    "PatchLoopError",
    "PathEscape",
    "MalformedDirective",
    "SourceNotFound",
    "TypecheckCollaboratorUnavailable",
    "InvalidTransition",
    "CommitRefused",
    "SessionConflict",
    "SessionNotFound",
    "PersistenceError",
    # Types
    "WriteDirective",
    "RenameDirective",
    "DeleteDirective",
    "AddDependencyDirective",
    "Directive",
    "ParsedDirective",
    "Problem",
    "TurnStatus",
    "FailureReason",
    "TurnResult",
]
