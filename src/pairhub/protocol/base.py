"""Messaging-protocol abstraction.

A :class:`ProtocolClient` connects one session (bound to its own
credential state) and returns a :class:`ProtocolSession`. Everything the
protocol layer reports afterwards arrives on that session's single typed
event stream, :meth:`ProtocolSession.events`.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from pairhub.protocol.credentials import CredentialStore

logger = logging.getLogger(__name__)


def user_jid(phone_number: str) -> str:
    """WhatsApp address of a phone number."""
    return f"{phone_number}@s.whatsapp.net"


@dataclass(frozen=True)
class PairingCode:
    code: str
    ttl: int | None = None


# ── Events ───────────────────────────────────────────────


@dataclass(frozen=True)
class ConnectionUpdate:
    """Connection status change. ``connection`` is ``connecting``, ``open`` or ``close``."""

    connection: str | None
    reason: str | None = None
    status_code: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.connection == "open"

    @property
    def is_close(self) -> bool:
        return self.connection == "close"


@dataclass(frozen=True)
class CredentialsUpdate:
    """Partial credential state that must be merged and persisted."""

    creds: dict[str, Any]


@dataclass(frozen=True)
class InboundMessage:
    remote_jid: str
    content: dict[str, Any] | None
    from_me: bool = False

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> InboundMessage | None:
        """Build from the protocol's ``{"key": {...}, "message": {...}}`` shape."""
        key = raw.get("key") or {}
        remote_jid = key.get("remoteJid")
        if not remote_jid:
            return None
        return cls(
            remote_jid=remote_jid,
            content=raw.get("message"),
            from_me=bool(key.get("fromMe", False)),
        )

    def text(self) -> str:
        if not self.content:
            return ""
        if self.content.get("conversation"):
            return self.content["conversation"]
        extended = self.content.get("extendedTextMessage") or {}
        return extended.get("text") or ""


@dataclass(frozen=True)
class MessagesUpsert:
    messages: tuple[InboundMessage, ...]


ProtocolEvent = Union[ConnectionUpdate, CredentialsUpdate, MessagesUpsert]


def parse_event(kind: str, data: dict[str, Any]) -> ProtocolEvent | None:
    """Translate a wire event (``connection.update`` etc.) into a typed event."""
    if kind == "connection.update":
        last = data.get("lastDisconnect") or {}
        error = last.get("error") or {}
        return ConnectionUpdate(
            connection=data.get("connection"),
            reason=error.get("reason") or error.get("message"),
            status_code=error.get("statusCode"),
            raw=data,
        )
    if kind == "creds.update":
        return CredentialsUpdate(creds=dict(data))
    if kind == "messages.upsert":
        parsed = (InboundMessage.from_raw(raw) for raw in data.get("messages", []))
        return MessagesUpsert(messages=tuple(m for m in parsed if m is not None))
    logger.debug("Ignoring unknown protocol event %r", kind)
    return None


# ── Sessions & clients ───────────────────────────────────

_END = object()


class ProtocolSession(ABC):
    """One live protocol connection.

    Transports feed events in with :meth:`emit`; the orchestrator drains
    them with :meth:`events`. :meth:`close` ends the stream locally.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: ProtocolEvent) -> None:
        if self._closed:
            logger.debug("Dropping %s for closed session %s", type(event).__name__, self.session_id)
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_END)

    async def events(self) -> AsyncIterator[ProtocolEvent]:
        while True:
            event = await self._queue.get()
            if event is _END:
                return
            yield event

    @abstractmethod
    async def request_pairing_code(self, phone_number: str) -> PairingCode:
        """Ask the protocol layer for a pairing code for *phone_number*."""

    @abstractmethod
    async def send_message(self, jid: str, text: str) -> None:
        """Send a plain text message."""

    @abstractmethod
    async def logout(self) -> None:
        """Log the linked device out, invalidating its credentials."""


class ProtocolClient(ABC):
    @abstractmethod
    async def connect(self, session_id: str, credentials: CredentialStore) -> ProtocolSession:
        """Open a protocol session bound to *credentials*."""

    async def aclose(self) -> None:
        """Release client-wide resources."""
