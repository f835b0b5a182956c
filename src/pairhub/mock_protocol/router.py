"""Mock protocol router — plays the phone side of simulated sessions.

Endpoints
---------
POST /sessions/{session_id}/confirm   → enter the pairing code on the "phone"
POST /sessions/{session_id}/close     → drop the connection with a reason
POST /sessions/{session_id}/inbound   → deliver a text message to the bot
GET  /sessions/{session_id}/outbox    → replies the bot has sent
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel

from pairhub.errors import ApiError
from pairhub.mock_protocol.client import SimulatedProtocolClient, SimulatedSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mock-protocol", tags=["mock-protocol"])


# ── Request models ───────────────────────────────────────

class ConfirmRequest(BaseModel):
    code: str


class CloseRequest(BaseModel):
    reason: str = "connection closed"
    status_code: int | None = None


class InboundRequest(BaseModel):
    from_jid: str
    text: str


# ── Helpers ──────────────────────────────────────────────

def _client(request: Request) -> SimulatedProtocolClient:
    client = request.app.state.services.protocol
    if not isinstance(client, SimulatedProtocolClient):
        raise ApiError("Simulated protocol is not enabled", status_code=404)
    return client


def _session(request: Request, session_id: str) -> SimulatedSession:
    session = _client(request).get(session_id)
    if session is None:
        raise ApiError("Session not found", status_code=404)
    return session


# ── Endpoints ────────────────────────────────────────────

@router.post("/sessions/{session_id}/confirm")
async def confirm_code(session_id: str, body: ConfirmRequest, request: Request):
    paired = _client(request).confirm_code(session_id, body.code)
    return {"paired": paired}


@router.post("/sessions/{session_id}/close")
async def close_connection(session_id: str, body: CloseRequest, request: Request):
    _session(request, session_id).drop(body.reason, status_code=body.status_code)
    logger.info("Simulated close for %s: %s", session_id, body.reason)
    return {"status": "ok"}


@router.post("/sessions/{session_id}/inbound")
async def inbound_message(session_id: str, body: InboundRequest, request: Request):
    _session(request, session_id).receive(body.from_jid, body.text)
    return {"status": "ok"}


@router.get("/sessions/{session_id}/outbox")
async def outbox(session_id: str, request: Request):
    sent = _session(request, session_id).sent
    return {"messages": [{"to": jid, "text": text} for jid, text in sent]}
