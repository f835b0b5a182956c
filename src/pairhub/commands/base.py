"""Base command — abstract interface every bot command must implement."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from pairhub.services.registry import SessionContext


@dataclass(frozen=True)
class Invocation:
    """Everything a command gets to see about the message that triggered it."""

    context: SessionContext
    args: str
    prefix: str


class BaseCommand(ABC):
    """Abstract base class for all bot commands.

    A command receives the text that followed its name and returns the
    reply to send back to the chat.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Lower-case command word (used for routing and in help)."""

    @property
    def usage(self) -> str:
        return ""

    @property
    @abstractmethod
    def description(self) -> str:
        """One-line summary shown by ``help``."""

    @abstractmethod
    async def run(self, invocation: Invocation) -> str:
        """Execute the command and return the reply text."""
