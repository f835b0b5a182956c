"""Bridge protocol client — async HTTP client for a protocol sidecar.

The sidecar owns the actual WhatsApp socket. We drive it over REST and it
posts every socket event back to ``POST /webhook/bridge``, where
:meth:`BridgeProtocolClient.route` hands them to the right session.

Sidecar endpoints
-----------------
POST /sessions                        → open a socket ``{sessionId, creds}``
POST /sessions/{id}/pairing-code      → ``{code, ttl}``
POST /sessions/{id}/messages          → send ``{to, text}``
POST /sessions/{id}/logout            → log the device out
"""

from __future__ import annotations

import logging

import httpx

from pairhub.config import settings
from pairhub.errors import PairingCodeError
from pairhub.protocol.base import PairingCode, ProtocolClient, ProtocolEvent, ProtocolSession
from pairhub.protocol.credentials import CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


class BridgeProtocolClient(ProtocolClient):
    """Async HTTP wrapper around the protocol sidecar."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.bridge_base_url).rstrip("/")
        self._token = token or settings.bridge_token
        self._transport = transport
        self._sessions: dict[str, BridgeSession] = {}

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={"X-Bridge-Token": self._token},
            timeout=DEFAULT_TIMEOUT,
            transport=self._transport,
        )

    async def _post(self, path: str, payload: dict | None = None) -> httpx.Response:
        async with self._http() as client:
            resp = await client.post(path, json=payload or {})
        resp.raise_for_status()
        return resp

    # ── ProtocolClient ───────────────────────────────────

    async def connect(self, session_id: str, credentials: CredentialStore) -> BridgeSession:
        """Ask the sidecar to open a socket with the stored credentials.

        HTTP failures propagate; the orchestrator treats them as fatal.
        """
        await self._post("/sessions", {"sessionId": session_id, "creds": credentials.creds})
        session = BridgeSession(session_id, self)
        self._sessions[session_id] = session
        logger.info("Bridge socket opened for session %s", session_id)
        return session

    def route(self, session_id: str, event: ProtocolEvent) -> bool:
        """Deliver a webhook event to its session. Returns ``False`` if unknown."""
        session = self._sessions.get(session_id)
        if session is None or session.closed:
            logger.warning("Bridge event for unknown session %s", session_id)
            return False
        session.emit(event)
        return True

    def forget(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


class BridgeSession(ProtocolSession):
    def __init__(self, session_id: str, client: BridgeProtocolClient) -> None:
        super().__init__(session_id)
        self._client = client

    async def request_pairing_code(self, phone_number: str) -> PairingCode:
        try:
            resp = await self._client._post(
                f"/sessions/{self.session_id}/pairing-code", {"phoneNumber": phone_number}
            )
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PairingCodeError(f"Pairing code request failed: {exc}") from exc

        code = data.get("pairingCode") or data.get("code")
        if not code:
            raise PairingCodeError("Bridge returned no pairing code")
        return PairingCode(code=code, ttl=data.get("ttl"))

    async def send_message(self, jid: str, text: str) -> None:
        await self._client._post(
            f"/sessions/{self.session_id}/messages", {"to": jid, "text": text}
        )

    async def logout(self) -> None:
        await self._client._post(f"/sessions/{self.session_id}/logout")

    def close(self) -> None:
        super().close()
        self._client.forget(self.session_id)
