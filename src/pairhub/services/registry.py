"""Session registry — durable session records plus the live-handle map.

The live map holds one :class:`LiveHandle` per session that is pairing or
connected. It is only ever changed inside a store transaction, together
with the status change that justifies it, so a record is never
``connected`` without a handle and a handle never outlives its record's
active status.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from pairhub.database.repository import SessionRepository
from pairhub.database.store import RecordStore, Transaction
from pairhub.models.base import utcnow
from pairhub.models.session import ACTIVE_STATUSES, SessionMeta, SessionStatus
from pairhub.protocol.base import PairingCode, ProtocolSession, user_jid
from pairhub.protocol.credentials import CredentialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """Snapshot of the record fields command handling needs."""

    id: str
    owner_user_id: str
    phone_number: str

    @property
    def jid(self) -> str:
        return user_jid(self.phone_number)

    @classmethod
    def from_meta(cls, meta: SessionMeta) -> SessionContext:
        return cls(id=meta.id, owner_user_id=meta.owner_user_id, phone_number=meta.phone_number)


@dataclass
class LiveHandle:
    """Runtime state of a pairing or connected session. Never persisted."""

    context: SessionContext
    protocol: ProtocolSession
    credentials: CredentialStore
    task: asyncio.Task | None = None
    connected: bool = False
    close_reason: str | None = None

    @property
    def session_id(self) -> str:
        return self.context.id

    async def send_text(self, jid: str, text: str) -> None:
        await self.protocol.send_message(jid, text)


class SessionRegistry:
    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock
        self._live: dict[str, LiveHandle] = {}

    # ── Live map (reads) ─────────────────────────────────

    def get_live(self, session_id: str) -> LiveHandle | None:
        return self._live.get(session_id)

    def live_ids(self) -> set[str]:
        return set(self._live)

    def live_handles(self) -> list[LiveHandle]:
        return list(self._live.values())

    @property
    def live_count(self) -> int:
        return len(self._live)

    # ── Records (reads) ──────────────────────────────────

    async def get(self, session_id: str) -> SessionMeta | None:
        async with self._store.read() as session:
            return await SessionRepository(session).get(session_id)

    async def list_for_owner(self, owner_user_id: str) -> Sequence[SessionMeta]:
        async with self._store.read() as session:
            return await SessionRepository(session).list_for_owner(owner_user_id)

    async def count_active(self) -> int:
        async with self._store.read() as session:
            return await SessionRepository(session).count_active()

    # ── Atomic mutations ─────────────────────────────────

    def evict_in(self, tx: Transaction, session_id: str) -> LiveHandle | None:
        """Remove a live handle as part of *tx*; restored if *tx* rolls back."""
        handle = self._live.pop(session_id, None)
        if handle is not None:
            tx.on_rollback(lambda: self._live.setdefault(session_id, handle))
        return handle

    async def register(self, handle: LiveHandle) -> None:
        """Add *handle* to the live map. The record must still be pairing."""
        session_id = handle.session_id
        async with self._store.transaction() as tx:
            meta = await SessionRepository(tx.session).get(session_id)
            if meta is None:
                raise LookupError(f"No session record {session_id}")
            if meta.status is not SessionStatus.PAIRING:
                raise ValueError(f"Session {session_id} is {meta.status.value}, not pairing")
            if session_id in self._live:
                raise ValueError(f"Session {session_id} already has a live handle")
            self._live[session_id] = handle
            tx.on_rollback(lambda: self._live.pop(session_id, None))
        logger.debug("Registered live handle for %s", session_id)

    async def transition(self, session_id: str, target: SessionStatus) -> SessionMeta | None:
        """Apply a status transition, evicting the live handle on terminal states.

        Returns the updated record, or ``None`` when the move was not allowed
        (unknown id or already terminal).
        """
        async with self._store.transaction() as tx:
            meta = await SessionRepository(tx.session).get(session_id)
            if meta is None:
                logger.warning("Transition to %s for unknown session %s", target.value, session_id)
                return None

            if target is SessionStatus.CONNECTED and session_id not in self._live:
                logger.warning("Session %s opened without a live handle; closing it", session_id)
                target = SessionStatus.DISCONNECTED

            if not meta.apply_transition(target, self._clock()):
                logger.debug(
                    "Ignored transition %s → %s for %s", meta.status.value, target.value, session_id
                )
                return None

            if target.is_terminal:
                self.evict_in(tx, session_id)

        logger.info("Session %s → %s", session_id, meta.status.value)
        return meta

    async def release(self, session_id: str, fallback: SessionStatus) -> SessionMeta | None:
        """Drop the live handle; move a still-active record to *fallback*."""
        async with self._store.transaction() as tx:
            meta = await SessionRepository(tx.session).get(session_id)
            if meta is not None and meta.status in ACTIVE_STATUSES:
                meta.apply_transition(fallback, self._clock())
                logger.info("Session %s released as %s", session_id, meta.status.value)
            self.evict_in(tx, session_id)
        return meta

    async def record_pairing_code(self, session_id: str, pairing: PairingCode) -> bool:
        async with self._store.transaction() as tx:
            meta = await SessionRepository(tx.session).get(session_id)
            if meta is None or meta.status is not SessionStatus.PAIRING:
                return False
            meta.pairing_code = pairing.code
            meta.pairing_code_ttl = pairing.ttl
            meta.pairing_created_at = self._clock()
        return True

    async def reconcile_orphans(self) -> list[str]:
        """Close active records that have no runtime (e.g. after a restart)."""
        closed: list[str] = []
        async with self._store.transaction() as tx:
            for meta in await SessionRepository(tx.session).list_by_status(*ACTIVE_STATUSES):
                if meta.id in self._live:
                    continue
                meta.apply_transition(SessionStatus.DISCONNECTED, self._clock())
                closed.append(meta.id)
        if closed:
            logger.warning("Marked %d orphaned session(s) disconnected", len(closed))
        return closed
