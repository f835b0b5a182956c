"""Session endpoints — create a pairing, list sessions, send commands."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from pairhub.api.deps import get_current_user, get_services
from pairhub.errors import ApiError
from pairhub.models.session import SessionStatus
from pairhub.models.user import User
from pairhub.services.container import Services
from pairhub.services.registry import SessionContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sessions"])


class CreatePairRequest(BaseModel):
    phoneNumber: str | None = None


class CommandRequest(BaseModel):
    commandText: str | None = None


@router.post("/create-pair")
async def create_pair(
    body: CreatePairRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Admit the request, then start pairing in the background."""
    meta = await services.gate.admit(user.id, body.phoneNumber)
    services.orchestrator.spawn_pairing(meta)
    return {"sessionId": meta.id, "status": SessionStatus.PAIRING.value}


@router.get("/sessions")
async def list_sessions(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    sessions = await services.registry.list_for_owner(user.id)
    return {"sessions": [meta.to_public() for meta in sessions]}


@router.post("/sessions/{session_id}/command")
async def send_command(
    session_id: str,
    body: CommandRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    if not body.commandText:
        raise ApiError("commandText required", status_code=400)

    meta = await services.registry.get(session_id)
    if meta is None:
        raise ApiError("Session not found", status_code=404)
    if meta.owner_user_id != user.id:
        raise ApiError("Not the owner", status_code=403)
    if meta.status is not SessionStatus.CONNECTED:
        raise ApiError("Session not connected", status_code=409)

    handle = services.registry.get_live(session_id)
    if handle is None:
        raise ApiError("Session runtime not available", status_code=503)

    result = await services.dispatcher.dispatch(
        handle, SessionContext.from_meta(meta), body.commandText
    )
    return result.to_dict()


@router.get("/status")
async def status(services: Services = Depends(get_services)):
    return {"activeSessions": await services.registry.count_active()}
