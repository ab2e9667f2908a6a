"""
Caching Service.

TTL cache with explicit invalidation, decoupled from whatever backs it.
MemoryCache keeps entries in-process; RedisCache wraps the shared
redis.asyncio client so several workers see the same entries.
"""

import json
from datetime import datetime, timedelta
from typing import Dict, Any, Optional


class MemoryCache:
    """Process-local cache."""

    def __init__(self, default_ttl_seconds: int = 300):
        self.default_ttl_seconds = default_ttl_seconds
        self._store: Dict[str, dict] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if not entry:
            return None

        if datetime.utcnow() > entry["expires_at"]:
            del self._store[key]
            return None

        return entry["data"]

    async def set(self, key: str, data: Any, ttl_seconds: Optional[int] = None):
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        self._store[key] = {
            "data": data,
            "expires_at": datetime.utcnow() + timedelta(seconds=ttl)
        }

    async def invalidate(self, prefix: str = "") -> int:
        """Drop every key starting with prefix (all keys when empty)."""
        keys = [k for k in self._store if k.startswith(prefix)]
        for key in keys:
            del self._store[key]
        return len(keys)

    async def clear(self):
        self._store.clear()


class RedisCache:
    """
    Redis-backed cache.

    Values are JSON encoded. Keys written through this instance are
    remembered locally so prefix invalidation needs no SCAN; entries
    written by other workers still expire through their TTL.
    """

    def __init__(self, client, namespace: str = "cache", default_ttl_seconds: int = 300):
        self.client = client
        self.namespace = namespace
        self.default_ttl_seconds = default_ttl_seconds
        self._known_keys: set[str] = set()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.client.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, data: Any, ttl_seconds: Optional[int] = None):
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        await self.client.set(self._key(key), json.dumps(data), ex=ttl)
        self._known_keys.add(key)

    async def invalidate(self, prefix: str = "") -> int:
        removed = 0
        for key in [k for k in self._known_keys if k.startswith(prefix)]:
            removed += await self.client.delete(self._key(key))
            self._known_keys.discard(key)
        return removed

    async def clear(self):
        await self.invalidate("")
