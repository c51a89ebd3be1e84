# patchloop/orchestration/events.py
"""
Turn event sequence.

Every turn emits, in order:
    chunk*  (raw agent text)
    patch*  (a just-applied directive batch)
    diagnostics  (one per checking phase)
    ... repeated per repair cycle ...
    done    (terminal, carries status and the full applied-directive log)

Any transport may carry these as long as per-turn order is preserved.
"""
import asyncio
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    CHUNK = "chunk"
    PATCH = "patch"
    DIAGNOSTICS = "diagnostics"
    DONE = "done"


class TurnEvent(BaseModel):
    type: EventType
    turn_id: str
    seq: int
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_ndjson(self) -> str:
        return self.model_dump_json() + "\n"


EventSink = Callable[[TurnEvent], Awaitable[None]]


class EventSequencer:
    """Stamps a strictly increasing seq on each event of one turn and fans it out."""

    def __init__(self, turn_id: str, sinks: Optional[Iterable[EventSink]] = None):
        self.turn_id = turn_id
        self.sinks: List[EventSink] = list(sinks or [])
        self._seq = 0

    async def emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> TurnEvent:
        event = TurnEvent(type=event_type, turn_id=self.turn_id, seq=self._seq, payload=payload or {})
        self._seq += 1
        for sink in self.sinks:
            await sink(event)
        return event


class EventChannel:
    """
    In-process transport: an async iterator over one turn's events.

    Iteration ends after the `done` event.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Optional[TurnEvent]]" = asyncio.Queue()
        self.closed = False

    async def publish(self, event: TurnEvent) -> None:
        if self.closed:
            return
        await self._queue.put(event)
        if event.type == EventType.DONE:
            self.closed = True

    def close(self) -> None:
        """End iteration even if `done` never arrives."""
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[TurnEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[TurnEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
            if event.type == EventType.DONE:
                return
