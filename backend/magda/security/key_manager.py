"""
Encryption key lifecycle.

The key is generated once per installation, persisted hex-encoded in the
secure store and cached in memory afterwards.  Callers that race on a fresh
store all await the same creation task, so only one key is ever written.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

from magda.db.secure_store import ENCRYPTION_KEY_NAME, BaseSecureStore
from magda.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

KEY_SIZE = 32


def generate_key() -> bytes:
    """Generate a cryptographically secure 32-byte key."""
    return os.urandom(KEY_SIZE)


class KeyManager:
    def __init__(self, store: BaseSecureStore, key_name: str = ENCRYPTION_KEY_NAME):
        self._store = store
        self._key_name = key_name
        self._key: Optional[bytes] = None
        self._pending: Optional[asyncio.Future] = None

    async def get_or_create_key(self) -> bytes:
        if self._key is not None:
            return self._key

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load_or_create())
        pending = self._pending
        try:
            # shield: a caller being cancelled must not abort the shared creation
            key = await asyncio.shield(pending)
        except BaseException:
            if pending.done() and self._pending is pending:
                self._pending = None
            raise

        self._key = key
        self._pending = None
        return key

    async def _load_or_create(self) -> bytes:
        stored = await self._read()
        if stored is not None:
            return self._decode(stored)

        logger.info("No encryption key found, generating a new one")
        key = generate_key()
        await self._write(key.hex())
        return key

    def _decode(self, stored: str) -> bytes:
        try:
            key = bytes.fromhex(stored)
        except ValueError:
            key = b""
        if len(key) != KEY_SIZE:
            # Refuse rather than overwrite: replacing it would orphan every blob
            logger.critical("Stored encryption key is malformed; refusing to continue")
            raise StorageUnavailable("Stored encryption key is malformed")
        return key

    async def _read(self) -> Optional[str]:
        try:
            return await self._store.get(self._key_name)
        except StorageUnavailable:
            raise
        except Exception as exc:
            logger.error("Secure store read of encryption key failed: %s", exc)
            raise StorageUnavailable("Secure store is unavailable") from exc

    async def _write(self, value: str) -> None:
        try:
            await self._store.set(self._key_name, value)
        except StorageUnavailable:
            raise
        except Exception as exc:
            logger.error("Secure store write of encryption key failed: %s", exc)
            raise StorageUnavailable("Secure store is unavailable") from exc
