# patchloop/lib/websocket.py
from typing import Dict, List
import asyncio

from fastapi import WebSocket

from patchloop.core.logging import log
from patchloop.orchestration.events import EventSink, TurnEvent


class ConnectionManager:
    """
    Per-session WebSocket connection manager.

    - Each session_id has its own list of WebSocket connections.
    - Turn events are pushed to every socket of their session, in emit order.
    """

    def __init__(self) -> None:
        # session_id -> list[WebSocket]
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: str) -> None:
        await websocket.accept()
        async with self._lock:
            self.active_connections.setdefault(session_id, []).append(websocket)
        log("TRANSPORT", "🔌 WebSocket connected", session_id=session_id)

    async def disconnect(self, websocket: WebSocket, session_id: str) -> None:
        async with self._lock:
            connections = self.active_connections.get(session_id, [])
            if websocket in connections:
                connections.remove(websocket)
            if not connections and session_id in self.active_connections:
                del self.active_connections[session_id]

    def connection_count(self, session_id: str) -> int:
        return len(self.active_connections.get(session_id, []))

    async def send_to_session(self, session_id: str, message: dict) -> None:
        """
        Send a JSON message to all clients connected for a given session_id.
        Takes a snapshot of connections under lock.
        """
        async with self._lock:
            connections = list(self.active_connections.get(session_id, []))

        disconnected: List[WebSocket] = []

        for ws in connections:
            try:
                await ws.send_json(message)
            except Exception as e:
                log("TRANSPORT", f"⚠️ Dropping dead socket: {e}", session_id=session_id)
                disconnected.append(ws)

        for ws in disconnected:
            await self.disconnect(ws, session_id)

    def sink_for(self, session_id: str) -> EventSink:
        """EventSink forwarding one session's turn events to its sockets."""
        async def sink(event: TurnEvent) -> None:
            await self.send_to_session(session_id, event.model_dump(mode="json"))
        return sink
