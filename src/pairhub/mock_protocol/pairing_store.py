"""In-memory pairing-code store with expiry — used by the simulated protocol."""

from __future__ import annotations

import logging
import random
import string
import time

logger = logging.getLogger(__name__)

# Pairing code validity period in seconds
PAIRING_CODE_TTL_SECONDS = 60

_ALPHABET = string.ascii_uppercase + string.digits


class PairingCodeStore:
    """In-memory pairing-code store.

    Each entry maps ``session_id → (code, created_at)``.
    Old entries are lazily purged on access.
    """

    def __init__(self, ttl_seconds: int = PAIRING_CODE_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._store: dict[str, tuple[str, float]] = {}

    def generate(self, session_id: str) -> str:
        """Generate and store an 8-character pairing code for *session_id*."""
        code = "".join(random.choices(_ALPHABET, k=8))
        self._store[session_id] = (code, time.time())
        logger.info("Pairing code generated for session %s: %s", session_id, code)
        return code

    def verify(self, session_id: str, code: str) -> bool:
        """Return ``True`` if *code* matches the stored one and is not expired."""
        entry = self._store.get(session_id)
        if entry is None:
            return False
        stored_code, created_at = entry
        if time.time() - created_at > self.ttl_seconds:
            self._store.pop(session_id, None)
            logger.info("Pairing code expired for session %s", session_id)
            return False
        if code.replace("-", "").upper() == stored_code:
            # A code pairs exactly one device
            self._store.pop(session_id, None)
            return True
        return False

    def discard(self, session_id: str) -> None:
        """Drop any outstanding code for *session_id*."""
        self._store.pop(session_id, None)
