"""
Durable token storage.

The session token is the only piece of client state that outlives the
process. Every backend keeps exactly one value under one well-known key
(`settings.token_storage_key`, default "token"). Only the SessionStore
reads or writes it.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Protocol

import redis.asyncio as aioredis

from claimgate.config import settings

logger = logging.getLogger(__name__)


class TokenStorage(Protocol):
    async def load(self) -> str | None: ...

    async def save(self, token: str) -> None: ...

    async def clear(self) -> None: ...


class MemoryTokenStorage:
    def __init__(self, token: str | None = None):
        self._token = token

    async def load(self) -> str | None:
        return self._token

    async def save(self, token: str) -> None:
        self._token = token

    async def clear(self) -> None:
        self._token = None


class FileTokenStorage:
    """JSON file holding `{key: token}`, written with owner-only permissions."""

    def __init__(self, path: str | None = None, key: str | None = None):
        self.path = Path(os.path.expanduser(path or settings.token_file))
        self.key = key or settings.token_storage_key

    # disk access happens in a worker thread

    async def load(self) -> str | None:
        return await asyncio.to_thread(self._read)

    async def save(self, token: str) -> None:
        await asyncio.to_thread(self._write, token)

    async def clear(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)

    def _read(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError:
            logger.warning("Token file %s is corrupt; ignoring it", self.path)
            return None
        token = data.get(self.key) if isinstance(data, dict) else None
        return token or None

    def _write(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps({self.key: token}))
        os.chmod(tmp, 0o600)
        os.replace(tmp, self.path)


class RedisTokenStorage:
    def __init__(self, redis_url: str | None = None, key: str | None = None):
        self.redis_url = redis_url or settings.redis_url
        self.key = key or settings.token_storage_key
        self._redis: aioredis.Redis | None = None

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    async def load(self) -> str | None:
        r = await self._get_redis()
        return await r.get(self.key)

    async def save(self, token: str) -> None:
        r = await self._get_redis()
        await r.set(self.key, token)

    async def clear(self) -> None:
        r = await self._get_redis()
        await r.delete(self.key)

    async def aclose(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def build_token_storage(kind: str | None = None) -> TokenStorage:
    kind = kind or settings.token_storage
    if kind == "memory":
        return MemoryTokenStorage()
    if kind == "file":
        return FileTokenStorage()
    if kind == "redis":
        return RedisTokenStorage()
    raise ValueError(f"Unknown token storage: {kind}")
