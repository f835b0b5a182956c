"""Command dispatcher — routes a text command to the matching handler."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from pairhub.commands.base import BaseCommand, Invocation
from pairhub.commands.builtin import default_commands
from pairhub.config import settings
from pairhub.errors import DispatchError
from pairhub.protocol.base import InboundMessage
from pairhub.services.registry import LiveHandle, SessionContext

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Value object returned for every dispatched input."""

    ok: bool
    result: Any = None
    error: str | None = None
    ignored: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ok": self.ok}
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        if self.ignored:
            data["ignored"] = True
        return data


class CommandDispatcher:
    """Central router that decides which command handles a message.

    Input is either a plain command string (API calls; the reply goes to
    the session's own number) or an :class:`InboundMessage` (the reply goes
    back to the sender). Anything without the command prefix is ignored.
    """

    def __init__(
        self,
        prefix: str | None = None,
        commands: Iterable[BaseCommand] | None = None,
    ) -> None:
        self.prefix = prefix or settings.command_prefix
        available = list(commands) if commands is not None else default_commands(settings.app_name)
        self._commands = {command.name: command for command in available}

    @staticmethod
    def normalize(
        context: SessionContext, message: str | InboundMessage
    ) -> tuple[str, str] | None:
        """Return ``(text, destination)`` or ``None`` for unsupported input."""
        if isinstance(message, str):
            return message.strip(), context.jid
        if isinstance(message, InboundMessage):
            return message.text().strip(), message.remote_jid
        return None

    async def dispatch(
        self,
        handle: LiveHandle,
        context: SessionContext,
        message: str | InboundMessage,
    ) -> DispatchResult:
        normalized = self.normalize(context, message)
        if normalized is None:
            return DispatchResult(ok=False, error="Unsupported message format")
        text, destination = normalized

        if not text or not text.startswith(self.prefix):
            return DispatchResult(ok=False, ignored=True)

        body = text[len(self.prefix):].strip()
        parts = body.split(maxsplit=1)
        name = parts[0].lower() if parts else ""
        args = parts[1].strip() if len(parts) > 1 else ""

        command = self._commands.get(name)
        if command is None:
            reply = f"Unknown command: {name}\nUse {self.prefix}help"
        else:
            logger.info("Session %s: %s%s", context.id, self.prefix, name)
            reply = await command.run(Invocation(context=context, args=args, prefix=self.prefix))

        return await self._send(handle, destination, reply)

    async def _send(self, handle: LiveHandle, destination: str, text: str) -> DispatchResult:
        try:
            await handle.send_text(destination, text)
        except Exception as exc:
            error = DispatchError(f"Failed to send reply: {exc}")
            logger.warning("Session %s: %s", handle.session_id, error.message)
            return DispatchResult(ok=False, error=error.message)
        return DispatchResult(ok=True, result=text)
