"""Simulated protocol client — an in-process stand-in for a real WhatsApp link.

Sessions behave like real ones from the orchestrator's point of view; the
"phone side" is driven through :class:`SimulatedProtocolClient` helpers
(confirm a pairing code, drop the connection, deliver a message), which
the dev router exposes over HTTP.
"""

from __future__ import annotations

import logging

from pairhub.mock_protocol.pairing_store import PairingCodeStore
from pairhub.protocol.base import (
    ConnectionUpdate,
    CredentialsUpdate,
    InboundMessage,
    MessagesUpsert,
    PairingCode,
    ProtocolClient,
    ProtocolSession,
    user_jid,
)
from pairhub.protocol.credentials import CredentialStore

logger = logging.getLogger(__name__)


class SimulatedSession(ProtocolSession):
    def __init__(self, session_id: str, client: SimulatedProtocolClient) -> None:
        super().__init__(session_id)
        self._client = client
        self._codes = client.codes
        self.phone_number: str | None = None
        self.is_open = False
        self.sent: list[tuple[str, str]] = []

    async def request_pairing_code(self, phone_number: str) -> PairingCode:
        self.phone_number = phone_number
        self.emit(ConnectionUpdate(connection="connecting", raw={"connection": "connecting"}))
        code = self._codes.generate(self.session_id)
        return PairingCode(code=code, ttl=self._codes.ttl_seconds)

    async def send_message(self, jid: str, text: str) -> None:
        if not self.is_open:
            raise ConnectionError("Connection is not open")
        self.sent.append((jid, text))
        logger.info("[sim:%s] → %s: %s", self.session_id, jid, text[:80])

    async def logout(self) -> None:
        if self.closed:
            raise ConnectionError("Connection already closed")
        self.drop("logged out", status_code=401)

    def close(self) -> None:
        super().close()
        self._client.forget(self.session_id)

    # ── Phone-side simulation ────────────────────────────

    def open(self) -> None:
        me = user_jid(self.phone_number) if self.phone_number else None
        self.emit(CredentialsUpdate(creds={"registered": True, "me": {"id": me}}))
        self.is_open = True
        self.emit(ConnectionUpdate(connection="open", raw={"connection": "open"}))

    def drop(self, reason: str, status_code: int | None = None) -> None:
        self.is_open = False
        self.emit(
            ConnectionUpdate(
                connection="close",
                reason=reason,
                status_code=status_code,
                raw={
                    "connection": "close",
                    "lastDisconnect": {"error": {"message": reason, "statusCode": status_code}},
                },
            )
        )

    def receive(self, from_jid: str, text: str) -> None:
        self.emit(
            MessagesUpsert(
                messages=(InboundMessage(remote_jid=from_jid, content={"conversation": text}),)
            )
        )


class SimulatedProtocolClient(ProtocolClient):
    def __init__(self, codes: PairingCodeStore | None = None) -> None:
        self.codes = codes or PairingCodeStore()
        self._sessions: dict[str, SimulatedSession] = {}

    async def connect(self, session_id: str, credentials: CredentialStore) -> SimulatedSession:
        session = SimulatedSession(session_id, self)
        self._sessions[session_id] = session
        logger.info("[sim:%s] connected with credentials from %s", session_id, credentials.folder)
        return session

    def get(self, session_id: str) -> SimulatedSession | None:
        return self._sessions.get(session_id)

    def forget(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self.codes.discard(session_id)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def confirm_code(self, session_id: str, code: str) -> bool:
        """Simulate the user typing *code* on their phone."""
        session = self._sessions.get(session_id)
        if session is None or session.closed:
            return False
        if not self.codes.verify(session_id, code):
            logger.info("[sim:%s] pairing code rejected", session_id)
            return False
        session.open()
        return True
