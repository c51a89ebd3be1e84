"""
Orchestration - applying directives and driving the typecheck repair loop.
"""
from .change_applier import ChangeApplier, BatchResult, APPLY_ORDER
from .controller import DiagnosticsLoopController, GeneratingCollaborator
from .digest import build_repair_digest
from .events import EventType, TurnEvent, EventSequencer, EventChannel
from .repair_budget import RepairBudget
from .retry_policy import RetryPolicy
from .state import SessionState, Session, SessionRegistry, ALLOWED_TRANSITIONS

__all__ = [
    "ChangeApplier",
    "BatchResult",
    "APPLY_ORDER",
    "DiagnosticsLoopController",
    "GeneratingCollaborator",
    "build_repair_digest",
    "EventType",
    "TurnEvent",
    "EventSequencer",
    "EventChannel",
    "RepairBudget",
    "RetryPolicy",
    "SessionState",
    "Session",
    "SessionRegistry",
    "ALLOWED_TRANSITIONS",
]
