"""WebSocket stream of a session's pairing events."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from pairhub.errors import ApiError
from pairhub.security import decode_token
from pairhub.services.container import Services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.websocket("/ws/pair/{session_id}")
async def pairing_events(websocket: WebSocket, session_id: str, token: str = ""):
    """Replay recent events for *session_id*, then stream new ones.

    Only the session owner may subscribe; the token goes in the query string.
    """
    services: Services = websocket.app.state.services
    try:
        user_id = decode_token(token)
    except ApiError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    meta = await services.registry.get(session_id)
    if meta is None or meta.owner_user_id != user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    logger.info("Event stream opened for %s", session_id)

    async def pump() -> None:
        async for event in services.events.channel(session_id).subscribe():
            await websocket.send_json(event.to_json())

    forwarder = asyncio.create_task(pump())
    try:
        # Client messages are ignored; reading only detects the disconnect.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Event stream closed for %s", session_id)
    finally:
        forwarder.cancel()
        await asyncio.gather(forwarder, return_exceptions=True)
        current = await services.registry.get(session_id)
        if current is None or current.status.is_terminal:
            services.events.discard(session_id)
