"""WebSocket manager for pushing engine events to connected clients.

The manager subscribes to the EventBus and forwards every event to all
open connections. A client that fails a send is dropped; it can reconnect
and recover state through the query API.
"""

import asyncio
import logging

from fastapi import WebSocket

from hostguard.events.models import EngineEvent

logger = logging.getLogger(__name__)


class EventWebSocketManager:
    """Manages WebSocket connections subscribed to engine events.

    Usage:
        manager = EventWebSocketManager()
        event_bus.subscribe(manager.broadcast)

        # In WebSocket endpoint
        await manager.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            await manager.disconnect(websocket)
    """

    def __init__(self):
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"Event WebSocket connected ({len(self._connections)} open)")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
                logger.info(f"Event WebSocket disconnected ({len(self._connections)} open)")

    async def broadcast(self, event: EngineEvent) -> None:
        """Send an event to every connected client.

        Args:
            event: Event to forward
        """
        async with self._lock:
            connections = list(self._connections)
        if not connections:
            return

        message = event.to_dict()
        disconnected = []
        for websocket in connections:
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Error sending to WebSocket: {e}")
                disconnected.append(websocket)

        for websocket in disconnected:
            await self.disconnect(websocket)

    @property
    def connection_count(self) -> int:
        return len(self._connections)


# Global instance for use across the application
event_ws_manager = EventWebSocketManager()
