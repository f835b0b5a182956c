"""Bridge webhook handler — receives protocol events from the sidecar."""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Header, Request

from pairhub.errors import ApiError
from pairhub.protocol.base import parse_event
from pairhub.protocol.bridge import BridgeProtocolClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


@router.post("/webhook/bridge")
async def receive_event(
    request: Request,
    x_bridge_token: str | None = Header(default=None),
) -> dict:
    """Route one sidecar event to its session.

    Expected payload::

        {
          "sessionId": "3f0c…",
          "event": "connection.update",
          "data": {"connection": "close",
                   "lastDisconnect": {"error": {"statusCode": 500,
                                                "message": "Bad session"}}}
        }
    """
    services = request.app.state.services
    expected = services.settings.bridge_token.encode("utf-8")
    if not hmac.compare_digest((x_bridge_token or "").encode("utf-8"), expected):
        logger.warning("Bridge webhook called with a bad token")
        raise ApiError("Forbidden", status_code=403)

    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise ApiError("Invalid request body", status_code=400)

    client = services.protocol
    if not isinstance(client, BridgeProtocolClient):
        raise ApiError("Bridge protocol is not enabled", status_code=404)

    session_id = body.get("sessionId")
    kind = body.get("event", "")
    if not session_id:
        logger.debug("Bridge event without sessionId, ignoring")
        return {"status": "ok"}

    event = parse_event(kind, body.get("data") or {})
    if event is None:
        return {"status": "ok"}

    delivered = client.route(session_id, event)
    return {"status": "ok" if delivered else "unknown-session"}
