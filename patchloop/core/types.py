# patchloop/core/types.py
"""
Shared types: edit directives, typechecker problems, turn status and result.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from patchloop.core.exceptions import PatchLoopError


# ================================================================
# DIRECTIVES
# ================================================================

class WriteDirective(BaseModel):
    """Create or overwrite one file."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["write"] = "write"
    path: str
    content: str
    description: Optional[str] = None


class RenameDirective(BaseModel):
    """Move one file. Serialized with `from` / `to` keys."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["rename"] = "rename"
    from_path: str = Field(alias="from")
    to_path: str = Field(alias="to")


class DeleteDirective(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["delete"] = "delete"
    path: str


class AddDependencyDirective(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["add-dependency"] = "add-dependency"
    packages: FrozenSet[str]


Directive = Annotated[
    Union[WriteDirective, RenameDirective, DeleteDirective, AddDependencyDirective],
    Field(discriminator="kind"),
]


@dataclass(frozen=True)
class ParsedDirective:
    """A directive plus the [start, end) span of its tag in the turn buffer."""
    directive: Any
    start: int
    end: int

    @property
    def span(self) -> Tuple[int, int]:
        return (self.start, self.end)


def directive_to_dict(directive: Any) -> Dict[str, Any]:
    """JSON-safe dict for events and turn reports."""
    data = directive.model_dump(mode="json", by_alias=True)
    if "packages" in data:
        data["packages"] = sorted(data["packages"])
    return data


# ================================================================
# PROBLEMS
# ================================================================

class Problem(BaseModel):
    """One typechecker diagnostic. Ordered by (file, line, column)."""
    model_config = ConfigDict(frozen=True)

    file: str
    line: int
    column: int
    message: str
    code: int
    snippet: Optional[str] = None

    def sort_key(self) -> Tuple[str, int, int]:
        return (self.file, self.line, self.column)

    def render(self) -> str:
        return f"{self.file}:{self.line}:{self.column} - {self.message} ({self.code})"


def sort_problems(problems: List[Problem]) -> List[Problem]:
    return sorted(problems, key=lambda p: p.sort_key())


# ================================================================
# TURN STATUS
# ================================================================

class TurnStatus(str, Enum):
    STREAMING = "streaming"
    CHECKING = "checking"
    REPAIRING = "repairing"
    CLEAN = "clean"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnStatus.CLEAN, TurnStatus.FAILED, TurnStatus.CANCELLED)


class FailureReason(str, Enum):
    REPAIR_BUDGET_EXHAUSTED = "repair_budget_exhausted"
    TYPECHECK_UNAVAILABLE = "typecheck_unavailable"
    GENERATION_FAILED = "generation_failed"


@dataclass
class TurnResult:
    """What a caller gets back from every terminal state."""
    turn_id: str
    status: TurnStatus
    applied_directives: List[Any] = field(default_factory=list)
    diagnostics: List[Problem] = field(default_factory=list)
    attempts: int = 0
    typecheck_calls: int = 0
    failure_reason: Optional[FailureReason] = None
    errors: List[PatchLoopError] = field(default_factory=list)
    warnings: List[PatchLoopError] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)

    def is_clean(self) -> bool:
        return self.status == TurnStatus.CLEAN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "status": self.status.value,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "applied_directives": [directive_to_dict(d) for d in self.applied_directives],
            "diagnostics": [p.model_dump() for p in self.diagnostics],
            "attempts": self.attempts,
            "typecheck_calls": self.typecheck_calls,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "dependencies": list(self.dependencies),
        }
