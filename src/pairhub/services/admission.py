"""Quota / rate gate in front of session creation."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from pairhub.config import settings
from pairhub.database.repository import SessionRepository, UserRepository
from pairhub.database.store import RecordStore
from pairhub.errors import (
    ApiError,
    CapacityReached,
    CooldownActive,
    InsufficientBalance,
    InvalidPhoneNumber,
)
from pairhub.models.base import new_id, utcnow
from pairhub.models.session import SessionMeta, SessionStatus

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^[0-9]{6,15}$")


def validate_phone(phone_number: str | None) -> str:
    if not phone_number or not PHONE_RE.fullmatch(phone_number):
        raise InvalidPhoneNumber()
    return phone_number


class AdmissionGate:
    """Accepts or rejects new-session requests.

    Checks run in order: phone format, per-user cooldown, global capacity,
    balance. The last three, the debit and the creation of the pending
    record all happen in one store transaction, so no two requests can
    pass on the same stale balance or the same free slot.
    """

    def __init__(
        self,
        store: RecordStore,
        sessions_dir: str | Path | None = None,
        max_active_sessions: int | None = None,
        pairing_cost: int | None = None,
        cooldown_seconds: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._sessions_dir = Path(sessions_dir or settings.sessions_dir)
        self._max_active = (
            settings.max_active_sessions if max_active_sessions is None else max_active_sessions
        )
        self._pairing_cost = settings.pairing_cost if pairing_cost is None else pairing_cost
        self._cooldown = (
            settings.pairing_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        )
        self._clock = clock

    def folder_for(self, session_id: str) -> str:
        return str(self._sessions_dir / f"session-{session_id}")

    async def admit(self, user_id: str, phone_number: str | None) -> SessionMeta:
        """Debit the pairing cost and create a ``pairing`` record.

        Raises an :class:`~pairhub.errors.AdmissionError` subclass on
        rejection; nothing is written in that case.
        """
        phone_number = validate_phone(phone_number)

        async with self._store.transaction() as tx:
            user = await UserRepository(tx.session).find_by_id(user_id)
            if user is None:
                raise ApiError("User not found", status_code=401)

            now = self._clock()
            last = user.last_pairing_request_at
            if last is not None:
                elapsed = (now - last).total_seconds()
                if elapsed < self._cooldown:
                    logger.info("Cooldown active for %s (%.1fs since last)", user_id, elapsed)
                    raise CooldownActive(retry_after=self._cooldown - elapsed)

            sessions = SessionRepository(tx.session)
            active = await sessions.count_active()
            if active >= self._max_active:
                logger.warning("Capacity reached: %d/%d active sessions", active, self._max_active)
                raise CapacityReached()

            if user.coins < self._pairing_cost:
                raise InsufficientBalance()

            user.debit(self._pairing_cost)
            user.last_pairing_request_at = now

            session_id = new_id()
            meta = SessionMeta(
                id=session_id,
                owner_user_id=user.id,
                phone_number=phone_number,
                folder=self.folder_for(session_id),
                status=SessionStatus.PAIRING,
                created_at=now,
            )
            sessions.add(meta)

        logger.info(
            "Admitted session %s for user %s (phone %s, balance now %d)",
            meta.id,
            user_id,
            phone_number,
            user.coins,
        )
        return meta
