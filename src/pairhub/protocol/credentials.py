"""Per-session credential store.

Each session keeps its key material in ``<folder>/creds.json``; folders are
never shared between sessions. Updates are flushed to disk (fsync + atomic
rename) before they are considered applied.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
from pathlib import Path
from typing import Any

from pairhub.models.base import utcnow

logger = logging.getLogger(__name__)

CREDS_FILENAME = "creds.json"


def _write_atomic(path: Path, data: dict[str, Any]) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2, sort_keys=True)
        fh.flush()
        os.fsync(fh.fileno())
    os.replace(tmp, path)


def _fresh_creds() -> dict[str, Any]:
    return {
        "registered": False,
        "registrationId": secrets.randbelow(16380) + 1,
        "noiseKey": secrets.token_hex(32),
        "advSecretKey": secrets.token_hex(32),
        "createdAt": utcnow().isoformat(),
    }


class CredentialStore:
    def __init__(self, folder: Path, creds: dict[str, Any]) -> None:
        self.folder = folder
        self._creds = creds
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self.folder / CREDS_FILENAME

    @property
    def creds(self) -> dict[str, Any]:
        return dict(self._creds)

    @classmethod
    async def load(cls, folder: str | os.PathLike) -> CredentialStore:
        """Load the folder's credentials, creating and persisting fresh ones if absent."""
        folder = Path(folder)
        await asyncio.to_thread(folder.mkdir, parents=True, exist_ok=True)
        path = folder / CREDS_FILENAME

        if path.exists():
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
            creds = json.loads(text)
            if not isinstance(creds, dict):
                raise ValueError(f"Malformed credential file {path}")
            logger.debug("Loaded credentials from %s", path)
            return cls(folder, creds)

        creds = _fresh_creds()
        await asyncio.to_thread(_write_atomic, path, creds)
        logger.info("Created fresh credentials in %s", folder)
        return cls(folder, creds)

    async def apply(self, update: dict[str, Any]) -> None:
        """Merge *update* and flush it durably."""
        async with self._lock:
            merged = {**self._creds, **update}
            await asyncio.to_thread(_write_atomic, self.path, merged)
            self._creds = merged
