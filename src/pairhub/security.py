"""Password hashing and access-token helpers."""

from __future__ import annotations

from datetime import timedelta

import bcrypt
import jwt

from pairhub.config import settings
from pairhub.errors import ApiError
from pairhub.models.base import utcnow


# bcrypt only looks at the first 72 bytes and newer releases refuse longer input.
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def create_token(user_id: str, email: str, expires_in: timedelta | None = None) -> str:
    lifetime = expires_in or timedelta(minutes=settings.token_expiry_minutes)
    payload = {
        "sub": user_id,
        "email": email,
        "exp": utcnow() + lifetime,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> str:
    """Validate *token* and return the user id it was issued for."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise ApiError("Token expired", status_code=401)
    except jwt.InvalidTokenError:
        raise ApiError("Invalid token", status_code=401)

    user_id = payload.get("sub")
    if not user_id:
        raise ApiError("Invalid token", status_code=401)
    return user_id
