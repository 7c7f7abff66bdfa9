"""WebSocket endpoint for real-time engine events.

Clients receive JSON messages of the form
{"type": "alert.raised", "payload": {...}, "timestamp": "..."}.
Connection attempts and inbound messages are admitted through the rate
limiter under the "websocket:connect" and "websocket:message" endpoints.
"""

import logging

from fastapi import APIRouter, WebSocket, status
from starlette.websockets import WebSocketDisconnect

from hostguard.config import settings
from hostguard.events.websocket import event_ws_manager
from hostguard.ratelimit.middleware import get_client_id
from hostguard.setup import get_rate_limiter

logger = logging.getLogger(__name__)

WS_CONNECT_ENDPOINT = "websocket:connect"
WS_MESSAGE_ENDPOINT = "websocket:message"

router = APIRouter(prefix="/api", tags=["events"])


@router.websocket("/events")
async def events_websocket(websocket: WebSocket):
    """WebSocket for engine push events.

    Any text sent by the client is answered with a pong so clients can keep
    the connection alive.

    Args:
        websocket: The WebSocket connection.
    """
    client_id = get_client_id(websocket, settings.trusted_proxies)
    user_agent = websocket.headers.get("User-Agent", "")
    limiter = get_rate_limiter()

    if limiter is not None:
        decision = limiter.admit(client_id, WS_CONNECT_ENDPOINT, user_agent)
        if not decision.allowed:
            logger.debug(f"WebSocket connection denied: {client_id} ({decision.reason.value})")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

    await websocket.accept()
    await event_ws_manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            limiter = get_rate_limiter()
            if limiter is not None:
                decision = limiter.admit(client_id, WS_MESSAGE_ENDPOINT, user_agent)
                if not decision.allowed:
                    await websocket.send_json(
                        {
                            "type": "error",
                            "reason": decision.reason.value,
                            "retry_after": decision.retry_after,
                        }
                    )
                    continue
            await websocket.send_json({"type": "pong", "received": data})
    except WebSocketDisconnect:
        await event_ws_manager.disconnect(websocket)
