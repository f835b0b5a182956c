"""Exception hierarchy shared by the services and the HTTP layer."""

from __future__ import annotations


class PairHubError(Exception):
    """Base class for every error raised by PairHub.

    ``status_code`` is the HTTP status the API layer answers with when the
    error escapes a request handler.
    """

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ApiError(PairHubError):
    """Generic request error (auth, lookup, ownership)."""


# ── Admission ────────────────────────────────────────────


class AdmissionError(PairHubError):
    """A new-session request was rejected. No state was mutated."""

    status_code = 400


class InvalidPhoneNumber(AdmissionError):
    status_code = 400

    def __init__(self) -> None:
        super().__init__("Invalid phone number format. Use international digits only.")


class CooldownActive(AdmissionError):
    status_code = 429

    def __init__(self, retry_after: float) -> None:
        super().__init__("Pairing requests are limited. Wait before requesting again.")
        self.retry_after = retry_after


class CapacityReached(AdmissionError):
    status_code = 409

    def __init__(self) -> None:
        super().__init__("Active sessions limit reached. Try later.")


class InsufficientBalance(AdmissionError):
    status_code = 402

    def __init__(self) -> None:
        super().__init__("Not enough coins to start a session.")


# ── Pairing / runtime ────────────────────────────────────


class PairingCodeError(PairHubError):
    """Requesting a pairing code failed. The session stays in ``pairing``."""


class FatalStartupError(PairHubError):
    """Credential load or protocol-session construction failed."""


class ConnectionClosed(PairHubError):
    """The protocol layer closed a session's connection."""

    def __init__(self, reason: str, recoverable: bool) -> None:
        super().__init__(f"Connection closed: {reason}")
        self.reason = reason
        self.recoverable = recoverable


class DispatchError(PairHubError):
    """Sending a command reply failed."""


class MeteringTerminationError(PairHubError):
    """Logging out a suspended session failed."""
