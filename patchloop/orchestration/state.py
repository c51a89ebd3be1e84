# patchloop/orchestration/state.py
"""
Turn and session state.

SessionState is the ephemeral record of one turn, owned by exactly one
controller. SessionRegistry maps session ids to their live session; it is an
explicit object held by whoever serves sessions, never a module global.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from patchloop.core.exceptions import (
    InvalidTransition,
    PatchLoopError,
    SessionConflict,
    SessionNotFound,
)
from patchloop.core.logging import log
from patchloop.core.types import FailureReason, Problem, TurnResult, TurnStatus


# streaming -> checking -> {clean | repairing}; repairing -> streaming; ... -> {clean | failed}
ALLOWED_TRANSITIONS: Dict[TurnStatus, Set[TurnStatus]] = {
    TurnStatus.STREAMING: {TurnStatus.CHECKING, TurnStatus.FAILED, TurnStatus.CANCELLED},
    TurnStatus.CHECKING: {TurnStatus.CLEAN, TurnStatus.REPAIRING, TurnStatus.FAILED, TurnStatus.CANCELLED},
    TurnStatus.REPAIRING: {TurnStatus.STREAMING, TurnStatus.CANCELLED},
    TurnStatus.CLEAN: set(),
    TurnStatus.FAILED: set(),
    TurnStatus.CANCELLED: set(),
}


@dataclass
class SessionState:
    """Everything one turn has done so far."""
    turn_id: str
    status: TurnStatus = TurnStatus.STREAMING
    attempt: int = 0
    applied_directives: List[Any] = field(default_factory=list)
    diagnostics: List[Problem] = field(default_factory=list)
    diagnostics_history: List[List[Problem]] = field(default_factory=list)
    errors: List[PatchLoopError] = field(default_factory=list)
    warnings: List[PatchLoopError] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    failure_reason: Optional[FailureReason] = None
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    finished_at: Optional[str] = None

    def transition(self, new_status: TurnStatus) -> None:
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(self.status.value, new_status.value)
        self.status = new_status
        if new_status.is_terminal:
            self.finished_at = datetime.now(timezone.utc).isoformat()

    def record_diagnostics(self, problems: List[Problem]) -> None:
        self.diagnostics = list(problems)
        self.diagnostics_history.append(list(problems))

    def to_result(self, typecheck_calls: int = 0) -> TurnResult:
        return TurnResult(
            turn_id=self.turn_id,
            status=self.status,
            applied_directives=list(self.applied_directives),
            diagnostics=list(self.diagnostics),
            attempts=self.attempt,
            typecheck_calls=typecheck_calls,
            failure_reason=self.failure_reason,
            errors=list(self.errors),
            warnings=list(self.warnings),
            dependencies=list(self.dependencies),
        )


# ═══════════════════════════════════════════════════════════════════
# SESSION REGISTRY
# ═══════════════════════════════════════════════════════════════════

@dataclass
class Session:
    """A live session: its controller owns the SessionState and OverlayStore."""
    session_id: str
    controller: Any
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    task: Optional["asyncio.Task"] = None

    @property
    def state(self) -> SessionState:
        return self.controller.state

    @property
    def overlay(self):
        return self.controller.overlay


class SessionRegistry:
    """
    Explicit session id -> Session map.

    Sessions are created on turn start and removed on commit or cancel.
    Different sessions never share a controller, state or overlay.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def start(self, session_id: str, controller: Any) -> Session:
        async with self._lock:
            if session_id in self._sessions:
                raise SessionConflict(session_id)
            session = Session(session_id=session_id, controller=controller)
            self._sessions[session_id] = session
            log("SESSION", "🟢 Session started", session_id=session_id)
            return session

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def end(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session:
            log("SESSION", "⚪ Session ended", session_id=session_id)
        return session

    def active_ids(self) -> List[str]:
        return sorted(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
