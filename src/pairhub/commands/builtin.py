"""Built-in bot commands."""

from __future__ import annotations

from collections.abc import Iterable

from pairhub.commands.base import BaseCommand, Invocation


class PingCommand(BaseCommand):
    name = "ping"
    description = "pong"

    async def run(self, invocation: Invocation) -> str:
        return "pong"


class InfoCommand(BaseCommand):
    name = "info"
    description = "session info"

    async def run(self, invocation: Invocation) -> str:
        ctx = invocation.context
        return f"Session: {ctx.id}\nPhone: {ctx.phone_number}\nOwner: {ctx.owner_user_id}"


class EchoCommand(BaseCommand):
    name = "echo"
    usage = "<text>"
    description = "repeat <text>"

    async def run(self, invocation: Invocation) -> str:
        return invocation.args


class HelpCommand(BaseCommand):
    name = "help"
    description = "this message"

    def __init__(self, title: str = "PairHub") -> None:
        self._title = title
        self._listing: list[BaseCommand] = []

    def describe(self, commands: Iterable[BaseCommand]) -> None:
        self._listing = list(commands)

    async def run(self, invocation: Invocation) -> str:
        lines = [f"{self._title} Help:", "Commands:"]
        for command in self._listing:
            usage = f" {command.usage}" if command.usage else ""
            lines.append(f"{invocation.prefix}{command.name}{usage} - {command.description}")
        return "\n".join(lines)


def default_commands(title: str = "PairHub") -> list[BaseCommand]:
    help_command = HelpCommand(title)
    commands: list[BaseCommand] = [PingCommand(), help_command, InfoCommand(), EchoCommand()]
    help_command.describe(commands)
    return commands
