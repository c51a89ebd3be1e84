# patchloop/core/exceptions.py
"""
Custom exceptions for the application.

Per-directive errors (PathEscape, MalformedDirective, SourceNotFound) are
collected on the turn rather than propagated. Repair budget exhaustion is not
an exception at all - it is a `failed` TurnResult.
"""
from typing import Optional, Dict, Any, Tuple


class PatchLoopError(Exception):
    """Base exception for all patchloop errors."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, **self.details}


class PathEscape(PatchLoopError):
    """A directive path resolves outside the project root."""
    def __init__(self, path: str, reason: str = "resolves outside the project root"):
        super().__init__(f"Rejected path '{path}': {reason}", {"path": path})
        self.path = path
        self.reason = reason


class MalformedDirective(PatchLoopError):
    """A directive tag that could not be parsed or never closed."""
    def __init__(self, tag: str, reason: str, span: Tuple[int, int] = (0, 0)):
        super().__init__(
            f"Malformed <{tag}> at {span[0]}: {reason}",
            {"tag": tag, "start": span[0], "end": span[1]},
        )
        self.tag = tag
        self.reason = reason
        self.span = span


class SourceNotFound(PatchLoopError):
    """Rename source exists neither in the overlay nor in the base tree."""
    def __init__(self, from_path: str, to_path: str):
        super().__init__(
            f"Cannot rename '{from_path}' -> '{to_path}': source not found",
            {"from": from_path, "to": to_path},
        )
        self.from_path = from_path
        self.to_path = to_path


class TypecheckCollaboratorUnavailable(PatchLoopError):
    """The typechecker itself crashed or timed out (distinct from compile errors)."""
    def __init__(self, reason: str, attempts: int = 1):
        super().__init__(
            f"Typecheck collaborator unavailable: {reason}",
            {"reason": reason, "attempts": attempts},
        )
        self.reason = reason
        self.attempts = attempts


class InvalidTransition(PatchLoopError):
    """Turn state machine was asked to make an illegal move."""
    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Illegal turn transition {current} -> {requested}",
            {"current": current, "requested": requested},
        )


class CommitRefused(PatchLoopError):
    """Commit attempted from a state that does not allow it."""
    def __init__(self, status: str, reason: str):
        super().__init__(f"Commit refused in state '{status}': {reason}", {"status": status})
        self.status = status


class SessionConflict(PatchLoopError):
    """A session id already owns an active turn."""
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} already has an active turn", {"session_id": session_id})
        self.session_id = session_id


class SessionNotFound(PatchLoopError):
    """No active session for the given id."""
    def __init__(self, session_id: str):
        super().__init__(f"No active session {session_id}", {"session_id": session_id})
        self.session_id = session_id


class PersistenceError(PatchLoopError):
    """File persistence error."""
    def __init__(self, path: str, message: str):
        super().__init__(
            f"Cannot write to {path}: {message}",
            {"path": path}
        )
        self.path = path
