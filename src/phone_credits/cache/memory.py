from __future__ import annotations

import time
from typing import Any, Dict, Optional, Tuple

from .base import AsyncCacheBackend


class InMemoryAsyncCache(AsyncCacheBackend):
    """
    Process-local cache with optional TTL, keyed by string.
    """

    def __init__(self, default_ttl_seconds: int | None = None) -> None:
        self._store: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._default_ttl = default_ttl_seconds

    async def get(self, key: str) -> Optional[Any]:
        value_ttl = self._store.get(key)
        if value_ttl is None:
            return None
        value, expires_at = value_ttl
        if expires_at is not None and expires_at < time.monotonic():
            self._store.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        expires_at = time.monotonic() + ttl if ttl else None
        self._store[key] = (value, expires_at)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
