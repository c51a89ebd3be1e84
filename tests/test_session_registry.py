"""
SessionRegistry and the in-process event channel.
"""
import asyncio
from unittest.mock import MagicMock

import pytest

from patchloop.core.exceptions import SessionConflict, SessionNotFound
from patchloop.orchestration.events import EventChannel, EventSequencer, EventType
from patchloop.orchestration.state import SessionRegistry


class TestSessionRegistry:

    async def test_start_get_end(self):
        registry = SessionRegistry()
        controller = MagicMock()

        session = await registry.start("s1", controller)

        assert registry.get("s1") is session
        assert session.controller is controller
        assert "s1" in registry
        assert len(registry) == 1

        assert await registry.end("s1") is session
        assert "s1" not in registry
        assert await registry.end("s1") is None

    async def test_conflicting_start(self):
        registry = SessionRegistry()
        await registry.start("s1", MagicMock())
        with pytest.raises(SessionConflict):
            await registry.start("s1", MagicMock())

    async def test_unknown_session(self):
        with pytest.raises(SessionNotFound):
            SessionRegistry().get("ghost")

    async def test_sessions_are_isolated(self):
        registry = SessionRegistry()
        a = await registry.start("a", MagicMock())
        b = await registry.start("b", MagicMock())
        assert a.controller is not b.controller
        assert registry.active_ids() == ["a", "b"]

    async def test_concurrent_starts_admit_one(self):
        registry = SessionRegistry()
        results = await asyncio.gather(
            *(registry.start("same", MagicMock()) for _ in range(5)),
            return_exceptions=True,
        )
        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert sum(isinstance(r, SessionConflict) for r in results) == 4


class TestEventChannel:

    async def test_iteration_ends_after_done(self):
        channel = EventChannel()
        sequencer = EventSequencer("turn-1", [channel.publish])

        await sequencer.emit(EventType.CHUNK, {"text": "a"})
        await sequencer.emit(EventType.DONE, {"status": "clean"})
        await sequencer.emit(EventType.CHUNK, {"text": "late"})

        received = [event async for event in channel]
        assert [(e.type, e.seq) for e in received] == [(EventType.CHUNK, 0), (EventType.DONE, 1)]
        assert channel.closed

    async def test_close_without_done(self):
        channel = EventChannel()
        sequencer = EventSequencer("turn-1", [channel.publish])
        await sequencer.emit(EventType.CHUNK, {"text": "a"})
        channel.close()

        received = [event async for event in channel]
        assert [e.type for e in received] == [EventType.CHUNK]
