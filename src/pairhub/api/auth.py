"""Registration and login endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from pairhub.api.deps import get_current_user, get_services
from pairhub.models.user import User
from pairhub.security import create_token
from pairhub.services.container import Services

router = APIRouter(prefix="/api", tags=["auth"])


class Credentials(BaseModel):
    email: str = ""
    password: str = ""


def _token_response(user: User) -> dict:
    return {"token": create_token(user.id, user.email), "user": user.to_public()}


@router.post("/register")
async def register(body: Credentials, services: Services = Depends(get_services)):
    user = await services.accounts.register(body.email, body.password)
    return _token_response(user)


@router.post("/login")
async def login(body: Credentials, services: Services = Depends(get_services)):
    user = await services.accounts.authenticate(body.email, body.password)
    return _token_response(user)


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return {"user": user.to_public()}
