"""Shared FastAPI dependencies."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pairhub.errors import ApiError
from pairhub.models.user import User
from pairhub.security import decode_token
from pairhub.services.container import Services

bearer = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    services: Services = Depends(get_services),
) -> User:
    """Resolve the bearer token to a user."""
    if credentials is None:
        raise ApiError("Missing authorization token", status_code=401)
    user = await services.accounts.get(decode_token(credentials.credentials))
    if user is None:
        raise ApiError("User not found", status_code=401)
    return user
