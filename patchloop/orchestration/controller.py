# patchloop/orchestration/controller.py
"""
Diagnostics Loop Controller

Drives one turn:

    streaming -> checking -> clean
                          -> repairing -> streaming -> checking -> ...
                          -> failed      (repair budget exhausted / typechecker down)
    any non-terminal      -> cancelled

DESIGN PRINCIPLE:
The repair cycle is a plain bounded loop. `attempt` increments exactly once per
repair cycle and the typechecker is consulted at most max_attempts + 1 times.
Directive batches are applied synchronously between suspension points, so the
overlay only ever holds fully-applied directives.
"""
import asyncio
import uuid
from typing import Any, AsyncIterator, Iterable, List, Optional, Protocol

from patchloop.core.config import settings
from patchloop.core.exceptions import (
    CommitRefused,
    PatchLoopError,
    TypecheckCollaboratorUnavailable,
)
from patchloop.core.logging import log, log_section
from patchloop.core.types import (
    FailureReason,
    ParsedDirective,
    Problem,
    TurnResult,
    TurnStatus,
    directive_to_dict,
    sort_problems,
)
from patchloop.orchestration.change_applier import BatchResult, ChangeApplier
from patchloop.orchestration.digest import build_repair_digest
from patchloop.orchestration.events import EventSequencer, EventSink, EventType
from patchloop.orchestration.repair_budget import RepairBudget
from patchloop.orchestration.retry_policy import RetryPolicy
from patchloop.orchestration.state import SessionState
from patchloop.persistence.base_tree import BaseTree
from patchloop.persistence.overlay import OverlayStore
from patchloop.persistence.writer import CommitReport, Committer
from patchloop.utils.parser import IncrementalTagParser
from patchloop.validation.typecheck import TypecheckCollaborator, TypecheckRequest


class GeneratingCollaborator(Protocol):
    """The agent runtime: a prompt in, a stream of text chunks out."""

    def stream(self, prompt: str) -> AsyncIterator[str]:
        ...


class DiagnosticsLoopController:
    """
    One controller per turn. Owns the turn's SessionState and OverlayStore.
    """

    def __init__(
        self,
        generator: GeneratingCollaborator,
        typechecker: TypecheckCollaborator,
        base: Optional[BaseTree] = None,
        *,
        session_id: str = "",
        turn_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
        tag_prefix: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sinks: Optional[Iterable[EventSink]] = None,
    ):
        self.generator = generator
        self.typechecker = typechecker
        self.session_id = session_id
        self.turn_id = turn_id or uuid.uuid4().hex
        self.tag_prefix = tag_prefix

        self.overlay = OverlayStore(base)
        self.applier = ChangeApplier(self.overlay, session_id=session_id)
        self.state = SessionState(turn_id=self.turn_id)
        self.budget = RepairBudget(
            max_attempts=settings.loop.max_attempts if max_attempts is None else max_attempts
        )
        self.retry_policy = retry_policy or RetryPolicy()
        self.events = EventSequencer(self.turn_id, sinks)

        self.typecheck_calls = 0
        self.result: Optional[TurnResult] = None
        self._started = False
        self._cancel_requested = False
        self._committed = False

    @property
    def max_attempts(self) -> int:
        return self.budget.max_attempts

    def add_sink(self, sink: EventSink) -> None:
        self.events.sinks.append(sink)

    # ─────────────────────────────────────────────────────────
    # Turn
    # ─────────────────────────────────────────────────────────

    async def run(self, prompt: str) -> TurnResult:
        """
        Run the turn to a terminal state and return its result.

        Task cancellation is honoured: the overlay is discarded, a `done`
        event is emitted, and CancelledError propagates.
        """
        if self._started:
            raise RuntimeError("a controller runs exactly one turn")
        self._started = True
        log_section("TURN", f"Turn {self.turn_id[:8]} started (max {self.max_attempts} repairs)", self.session_id)

        try:
            return await self._loop(prompt)
        except asyncio.CancelledError:
            if not self.state.status.is_terminal:
                await self._finish_cancelled()
            raise

    def cancel(self) -> None:
        """Request cooperative cancellation; honoured at the next suspension point."""
        if not self.state.status.is_terminal:
            self._cancel_requested = True
            log("TURN", "🛑 Cancellation requested", session_id=self.session_id)

    async def _loop(self, prompt: str) -> TurnResult:
        next_prompt = prompt

        while True:
            await self._stream(next_prompt)
            if self.state.status.is_terminal:
                return self.result
            if self._cancel_requested:
                return await self._finish_cancelled()

            self.state.transition(TurnStatus.CHECKING)
            if not self.budget.use_check():
                return await self._fail(FailureReason.REPAIR_BUDGET_EXHAUSTED)

            try:
                problems = await self._typecheck()
            except TypecheckCollaboratorUnavailable as e:
                self.state.errors.append(e)
                return await self._fail(FailureReason.TYPECHECK_UNAVAILABLE)

            if self._cancel_requested:
                return await self._finish_cancelled()

            self.state.record_diagnostics(problems)
            await self.events.emit(
                EventType.DIAGNOSTICS,
                {"attempt": self.state.attempt, "problems": [p.model_dump() for p in problems]},
            )

            if not problems:
                self.state.transition(TurnStatus.CLEAN)
                return await self._finish()

            if not self.budget.can_repair():
                log("REPAIR", self.budget.get_exhaustion_diagnostic(len(problems)), session_id=self.session_id)
                return await self._fail(FailureReason.REPAIR_BUDGET_EXHAUSTED)

            self.state.transition(TurnStatus.REPAIRING)
            self.budget.use_repair(len(problems))
            self.state.attempt += 1
            next_prompt = build_repair_digest(problems)
            self.state.transition(TurnStatus.STREAMING)

    async def _stream(self, prompt: str) -> None:
        """Consume one generation; apply each closed directive batch as it arrives."""
        parser = IncrementalTagParser(self.tag_prefix)
        stream = self.generator.stream(prompt).__aiter__()

        try:
            while True:
                if self._cancel_requested:
                    await self._finish_cancelled()
                    return
                try:
                    chunk = await stream.__anext__()
                except StopAsyncIteration:
                    break
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self.state.warnings.extend(parser.finish())
                    self.state.errors.append(PatchLoopError(f"Generation stream failed: {e}", {"stage": "streaming"}))
                    log("TURN", f"❌ Generation stream failed: {e}", session_id=self.session_id)
                    await self._fail(FailureReason.GENERATION_FAILED)
                    return

                await self.events.emit(EventType.CHUNK, {"text": chunk})
                parsed = parser.feed(chunk)
                self.state.errors.extend(parser.drain_errors())
                if parsed:
                    await self._apply(parsed)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        self.state.warnings.extend(parser.finish())

    async def _apply(self, parsed: List[ParsedDirective]) -> BatchResult:
        batch = self.applier.apply_batch(parsed)
        self._record_batch(batch)
        if batch.applied or batch.errors:
            await self.events.emit(
                EventType.PATCH,
                {
                    "directives": [directive_to_dict(d) for d in batch.applied],
                    "errors": [e.to_dict() for e in batch.errors],
                },
            )
        return batch

    def _record_batch(self, batch: BatchResult) -> None:
        self.state.applied_directives.extend(batch.applied)
        self.state.errors.extend(batch.errors)
        self.state.dependencies = sorted(self.applier.dependencies)

    async def _typecheck(self) -> List[Problem]:
        request = TypecheckRequest.from_overlay(self.overlay)

        async def call() -> List[Problem]:
            self.typecheck_calls += 1
            return await self.typechecker.check(request)

        log("TYPECHECK", f"🔍 Check {self.budget.checks_used}/{self.budget.checks_max}", session_id=self.session_id)
        return sort_problems(await self.retry_policy.run(call, label=f"turn {self.turn_id[:8]}"))

    # ─────────────────────────────────────────────────────────
    # Terminal states
    # ─────────────────────────────────────────────────────────

    async def _fail(self, reason: FailureReason) -> TurnResult:
        self.state.failure_reason = reason
        self.state.transition(TurnStatus.FAILED)
        return await self._finish()

    async def _finish_cancelled(self) -> TurnResult:
        self.state.transition(TurnStatus.CANCELLED)
        self.overlay.clear()
        return await self._finish()

    async def _finish(self) -> TurnResult:
        self.result = self.state.to_result(typecheck_calls=self.typecheck_calls)
        log(
            "TURN",
            f"🏁 Turn {self.state.status.value} after {self.state.attempt} repairs, "
            f"{len(self.state.applied_directives)} directives applied",
            session_id=self.session_id,
        )
        await self.events.emit(EventType.DONE, self.result.to_dict())
        return self.result

    # ─────────────────────────────────────────────────────────
    # Replay / commit / discard
    # ─────────────────────────────────────────────────────────

    def replay(self, directives: Iterable[Any]) -> BatchResult:
        """Re-apply a directive log; what this turn already applied is skipped."""
        if self.state.status.is_terminal:
            raise RuntimeError(f"cannot replay into a {self.state.status.value} turn")
        batch = self.applier.replay(directives)
        self._record_batch(batch)
        return batch

    async def commit(self, committer: Committer, force: bool = False) -> CommitReport:
        """
        Hand the overlay to the commit collaborator, then clear it.

        Allowed from `clean`; from `failed` only when the user forces it.
        """
        status = self.state.status
        if self._committed:
            raise CommitRefused(status.value, "overlay already committed")
        if status == TurnStatus.CANCELLED:
            raise CommitRefused(status.value, "cancelled turns are discarded")
        if not status.is_terminal:
            raise CommitRefused(status.value, "turn still in progress")
        if status == TurnStatus.FAILED and not force:
            raise CommitRefused(status.value, "failed turns are only committed when forced")

        report = await committer.commit(self.overlay.snapshot())
        self.overlay.clear()
        self._committed = True
        log(
            "COMMIT",
            f"💾 Committed {len(report.written)} writes, {len(report.deleted)} deletes"
            f"{' (forced)' if status == TurnStatus.FAILED else ''}",
            session_id=self.session_id,
        )
        return report

    def discard(self) -> None:
        self.overlay.clear()
        log("TURN", "🧹 Overlay discarded", session_id=self.session_id)
