"""Pairing orchestrator — drives a session from creation to its terminal state.

Each session gets one runtime task that owns its protocol event stream.
Connection changes, credential updates and inbound messages are handled
in arrival order by that single loop, so the record status and the live
handle always move together.
"""

from __future__ import annotations

import asyncio
import logging

from pairhub.config import settings
from pairhub.errors import (
    ConnectionClosed,
    FatalStartupError,
    MeteringTerminationError,
    PairingCodeError,
)
from pairhub.models.session import SessionMeta, SessionStatus
from pairhub.protocol.base import (
    ConnectionUpdate,
    CredentialsUpdate,
    MessagesUpsert,
    ProtocolClient,
    ProtocolEvent,
)
from pairhub.protocol.credentials import CredentialStore
from pairhub.services.dispatcher import CommandDispatcher
from pairhub.services.events import (
    PAIRING_CLOSED,
    PAIRING_CODE,
    PAIRING_CONNECTED,
    PAIRING_ERROR,
    PAIRING_UPDATE,
    EventHub,
)
from pairhub.services.registry import LiveHandle, SessionContext, SessionRegistry

logger = logging.getLogger(__name__)

# Close reasons after which the stored credentials are no longer usable.
UNRECOVERABLE_STATUS_CODES = frozenset({401, 403, 411, 500})
UNRECOVERABLE_MARKERS = ("bad session", "logged out", "invalid session", "corrupt")


def classify_close(update: ConnectionUpdate) -> ConnectionClosed:
    """Decide whether a close is recoverable. Unknown reasons are."""
    text = (update.reason or "").lower()
    unrecoverable = update.status_code in UNRECOVERABLE_STATUS_CODES or any(
        marker in text for marker in UNRECOVERABLE_MARKERS
    )
    reason = update.reason or (str(update.status_code) if update.status_code else "unknown")
    return ConnectionClosed(reason, recoverable=not unrecoverable)


class PairingOrchestrator:
    def __init__(
        self,
        registry: SessionRegistry,
        events: EventHub,
        protocol: ProtocolClient,
        dispatcher: CommandDispatcher,
        logout_timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._events = events
        self._protocol = protocol
        self._dispatcher = dispatcher
        self._logout_timeout = (
            settings.logout_timeout_seconds if logout_timeout is None else logout_timeout
        )
        self._startups: set[asyncio.Task] = set()
        self._runtimes: set[asyncio.Task] = set()
        self._teardowns: set[asyncio.Task] = set()

    # ── Startup ──────────────────────────────────────────

    async def start_pairing(
        self, session_id: str, folder: str, phone_number: str, owner_id: str
    ) -> LiveHandle:
        """Provision credentials, connect and register the session.

        Returns as soon as the live handle is registered; everything after
        that is reported on the session's event channel. Failures up to
        that point mark the record ``failed`` and raise
        :class:`FatalStartupError`.
        """
        context = SessionContext(id=session_id, owner_user_id=owner_id, phone_number=phone_number)
        protocol_session = None
        try:
            credentials = await CredentialStore.load(folder)
            protocol_session = await self._protocol.connect(session_id, credentials)
            handle = LiveHandle(context=context, protocol=protocol_session, credentials=credentials)
            await self._registry.register(handle)
        except Exception as exc:
            if protocol_session is not None:
                protocol_session.close()
            await self._fail_startup(session_id, exc)
            raise FatalStartupError(f"Could not start session {session_id}: {exc}") from exc

        handle.task = asyncio.create_task(self._run(handle), name=f"session:{session_id}")
        self._runtimes.add(handle.task)
        handle.task.add_done_callback(self._runtimes.discard)
        logger.info("Pairing started for session %s (phone %s)", session_id, phone_number)
        return handle

    def spawn_pairing(self, meta: SessionMeta) -> asyncio.Task:
        """Start pairing in a supervised background task."""
        task = asyncio.create_task(
            self.start_pairing(meta.id, meta.folder, meta.phone_number, meta.owner_user_id),
            name=f"startup:{meta.id}",
        )
        self._startups.add(task)
        task.add_done_callback(self._startup_done)
        return task

    def _startup_done(self, task: asyncio.Task) -> None:
        self._startups.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s failed: %s", task.get_name(), exc)

    async def _fail_startup(self, session_id: str, exc: Exception) -> None:
        logger.error("Pairing startup failed for %s: %s", session_id, exc)
        self._events.publish(
            session_id,
            PAIRING_ERROR,
            {"message": "Internal pairing error", "details": str(exc)},
        )
        try:
            await self._registry.transition(session_id, SessionStatus.FAILED)
        except Exception:
            logger.exception("Could not mark session %s failed", session_id)
        self._events.discard(session_id)

    # ── Runtime loop ─────────────────────────────────────

    async def _run(self, handle: LiveHandle) -> None:
        session_id = handle.session_id
        code_task = asyncio.create_task(self._issue_pairing_code(handle))
        fallback = SessionStatus.DISCONNECTED
        saw_close = False
        try:
            async for event in handle.protocol.events():
                if isinstance(event, ConnectionUpdate) and event.is_close:
                    saw_close = True
                if not await self._handle_event(handle, event):
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Runtime loop for %s crashed", session_id)
            self._events.publish(
                session_id,
                PAIRING_ERROR,
                {"message": "Session runtime error", "details": str(exc)},
            )
            fallback = SessionStatus.FAILED
        finally:
            if not code_task.done():
                code_task.cancel()
            handle.protocol.close()
            if not saw_close:
                self._events.publish(
                    session_id,
                    PAIRING_CLOSED,
                    {"reason": handle.close_reason or "runtime stopped", "recoverable": True},
                )
            await self._registry.release(session_id, fallback)
            self._events.discard(session_id)
            logger.info("Runtime for %s stopped", session_id)

    async def _handle_event(self, handle: LiveHandle, event: ProtocolEvent) -> bool:
        """Apply one event. Returns ``False`` when the loop should stop."""
        if isinstance(event, CredentialsUpdate):
            await handle.credentials.apply(event.creds)
            return True

        if isinstance(event, MessagesUpsert):
            await self._forward_messages(handle, event)
            return True

        if isinstance(event, ConnectionUpdate):
            self._events.publish(
                handle.session_id, PAIRING_UPDATE, event.raw or {"connection": event.connection}
            )
            if event.is_open:
                return await self._on_open(handle, event)
            if event.is_close:
                await self._on_close(handle, event)
                return False
        return True

    async def _issue_pairing_code(self, handle: LiveHandle) -> None:
        session_id = handle.session_id
        try:
            pairing = await handle.protocol.request_pairing_code(handle.context.phone_number)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = exc if isinstance(exc, PairingCodeError) else PairingCodeError(str(exc))
            logger.warning("Pairing code request failed for %s: %s", session_id, error)
            self._events.publish(
                session_id,
                PAIRING_ERROR,
                {"message": "Pairing code generation failed", "details": str(error)},
            )
            return

        await self._registry.record_pairing_code(session_id, pairing)
        self._events.publish(session_id, PAIRING_CODE, {"code": pairing.code, "ttl": pairing.ttl})

    async def _on_open(self, handle: LiveHandle, event: ConnectionUpdate) -> bool:
        session_id = handle.session_id
        meta = await self._registry.transition(session_id, SessionStatus.CONNECTED)
        if meta is None:
            current = await self._registry.get(session_id)
            return current is not None and current.status.is_active
        if meta.status is not SessionStatus.CONNECTED:
            return False

        handle.connected = True
        self._events.publish(session_id, PAIRING_CONNECTED, {"info": event.raw})
        return True

    async def _on_close(self, handle: LiveHandle, event: ConnectionUpdate) -> None:
        session_id = handle.session_id
        handle.connected = False
        closed = classify_close(event)
        logger.info(
            "Session %s closed (%s, %s)",
            session_id,
            closed.reason,
            "recoverable" if closed.recoverable else "unrecoverable",
        )
        self._events.publish(
            session_id,
            PAIRING_CLOSED,
            {"reason": closed.reason, "recoverable": closed.recoverable},
        )
        target = SessionStatus.DISCONNECTED if closed.recoverable else SessionStatus.FAILED
        await self._registry.transition(session_id, target)

    async def _forward_messages(self, handle: LiveHandle, event: MessagesUpsert) -> None:
        if not handle.connected:
            logger.debug("Dropping %d message(s) for unconnected %s", len(event.messages), handle.session_id)
            return
        for message in event.messages:
            # Our own outbound messages come back on the same stream.
            if message.from_me or not message.content:
                continue
            try:
                result = await self._dispatcher.dispatch(handle, handle.context, message)
            except Exception:
                logger.exception("Message handler error in session %s", handle.session_id)
                continue
            if result.error:
                logger.warning("Session %s: dispatch error: %s", handle.session_id, result.error)

    # ── Teardown ─────────────────────────────────────────

    async def terminate(self, handle: LiveHandle, reason: str) -> None:
        """Log the session out, best effort, and stop its runtime.

        The logout is bounded by ``logout_timeout``; the protocol session is
        closed whatever the outcome.
        """
        handle.close_reason = reason
        try:
            await asyncio.wait_for(handle.protocol.logout(), self._logout_timeout)
        except Exception as exc:
            detail = "timed out" if isinstance(exc, asyncio.TimeoutError) else str(exc)
            error = MeteringTerminationError(f"Logout failed for {handle.session_id}: {detail}")
            logger.warning(error.message)
        finally:
            handle.protocol.close()

    def spawn_terminate(self, handle: LiveHandle, reason: str) -> asyncio.Task:
        """Run :meth:`terminate` in a supervised background task."""
        task = asyncio.create_task(
            self.terminate(handle, reason), name=f"terminate:{handle.session_id}"
        )
        self._teardowns.add(task)
        task.add_done_callback(self._teardown_done)
        return task

    def _teardown_done(self, task: asyncio.Task) -> None:
        self._teardowns.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s failed: %s", task.get_name(), task.exception())

    async def shutdown(self) -> None:
        """Stop every runtime; their records end up ``disconnected``."""
        for task in self._startups | self._teardowns:
            task.cancel()
        handles = self._registry.live_handles()
        for handle in handles:
            handle.close_reason = "server shutdown"
            handle.protocol.close()
        tasks = self._startups | self._teardowns | self._runtimes
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._protocol.aclose()
        logger.info("Orchestrator stopped (%d runtime(s))", len(handles))
