"""
Secure key-value persistence - the server-side stand-in for the platform
secure store the mobile app writes its encrypted blobs to.

Every backend exposes the same awaitable ``get`` / ``set`` / ``delete``
capability set and reports I/O failures as ``StorageUnavailable``.
Values are opaque strings; encryption happens above this layer.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from magda.config import Settings
from magda.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

# Logical key names shared with the mobile app
USER_DATA_KEY = "magda_user_data"
ENCRYPTION_KEY_NAME = "magda_encryption_key"
OPENAI_API_KEY_NAME = "magda_openai_api_key"


class BaseSecureStore:
    """Interface for secure key-value stores."""

    async def get(self, key: str) -> Optional[str]:  # pragma: no cover - abstract
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    async def delete(self, key: str) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemorySecureStore(BaseSecureStore):
    """Process-local store for tests and throwaway sessions."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class FileSecureStore(BaseSecureStore):
    """JSON file store; each write replaces the file atomically."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._data: Optional[dict[str, str]] = None

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            logger.error("Secure store file %s is unreadable: %s", self._path, exc)
            raise StorageUnavailable(f"Secure store file {self._path} is unreadable") from exc
        if not isinstance(data, dict):
            raise StorageUnavailable(f"Secure store file {self._path} is not a JSON object")
        return data

    def _write(self, data: dict[str, str]) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, sort_keys=True), encoding="utf-8")
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        except OSError as exc:
            logger.error("Secure store write to %s failed: %s", self._path, exc)
            raise StorageUnavailable(f"Secure store file {self._path} is not writable") from exc

    async def _load(self) -> dict[str, str]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._read)
        return self._data

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            data = await self._load()
            return data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = dict(await self._load())
            data[key] = value
            await asyncio.to_thread(self._write, data)
            self._data = data

    async def delete(self, key: str) -> None:
        async with self._lock:
            current = await self._load()
            if key not in current:
                return
            data = {k: v for k, v in current.items() if k != key}
            await asyncio.to_thread(self._write, data)
            self._data = data


class RedisSecureStore(BaseSecureStore):
    """Store backed by Redis (for multi-process deployments)."""

    def __init__(self, url: str, client=None):
        self._client = client if client is not None else aioredis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            logger.error("Redis GET %s failed: %s", key, exc)
            raise StorageUnavailable("Redis secure store is unavailable") from exc

    async def set(self, key: str, value: str) -> None:
        try:
            await self._client.set(key, value)
        except RedisError as exc:
            logger.error("Redis SET %s failed: %s", key, exc)
            raise StorageUnavailable("Redis secure store is unavailable") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            logger.error("Redis DEL %s failed: %s", key, exc)
            raise StorageUnavailable("Redis secure store is unavailable") from exc

    async def close(self) -> None:
        await self._client.aclose()


def build_secure_store(settings: Settings) -> BaseSecureStore:
    backend = settings.SECURE_STORE_BACKEND
    if backend == "memory":
        logger.warning("Using in-memory secure store; data will not survive a restart")
        return MemorySecureStore()
    if backend == "redis":
        return RedisSecureStore(settings.REDIS_URL)
    return FileSecureStore(settings.SECURE_STORE_PATH)
