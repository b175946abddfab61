"""Two-tier cache for agent responses.

Tier 1 is an in-process LRU with per-entry TTL. Tier 2 is a shared cache
(Redis) reached through the ``SharedCache`` protocol. Both use the same
SHA-256 key of role, context and scenario. A tier-2 hit back-fills tier 1.
Cache faults are logged and treated as misses.
"""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Protocol

import redis.asyncio as aioredis

from boardroom.models import ResponseMetadata

logger = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 1800
DEFAULT_MAX_ENTRIES = 100


@dataclass(frozen=True)
class CachedResponse:
    role: str
    content: str
    model: str
    created_at: float  # epoch seconds
    metadata: ResponseMetadata | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "CachedResponse":
        data = json.loads(raw)
        metadata = data.get("metadata")
        return cls(
            role=str(data["role"]),
            content=str(data["content"]),
            model=str(data["model"]),
            created_at=float(data["created_at"]),
            metadata=ResponseMetadata(**metadata) if metadata else None,
        )


def cache_key(role: str, context: str, scenario: str) -> str:
    return hashlib.sha256(f"{role}:{context}:{scenario}".encode("utf-8")).hexdigest()


class ResponseCache:
    """Thread-safe in-process LRU cache with TTL expiry."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, ttl_sec: float = DEFAULT_TTL_SEC) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self.ttl_sec = ttl_sec
        self._entries: OrderedDict[str, CachedResponse] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, now: float | None = None) -> CachedResponse | None:
        now = time.time() if now is None else now
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if now - entry.created_at > self.ttl_sec:
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry

    def put(self, key: str, entry: CachedResponse) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def cleanup(self, now: float | None = None) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = time.time() if now is None else now
        with self._lock:
            expired = [k for k, e in self._entries.items() if now - e.created_at > self.ttl_sec]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class SharedCache(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_sec: int) -> None: ...


class RedisSharedCache:
    """Shared tier backed by Redis. Unavailability degrades to cache misses."""

    def __init__(self, url: str, prefix: str = "boardroom:agent:") -> None:
        self._url = url
        self._prefix = prefix
        self._client = None

    def _redis(self):
        if self._client is None:
            self._client = aioredis.from_url(self._url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis().get(self._prefix + key)
        except Exception as exc:
            logger.warning("Shared cache unavailable (Redis error on get): %s", exc)
            return None

    async def set(self, key: str, value: str, ttl_sec: int) -> None:
        try:
            await self._redis().set(self._prefix + key, value, ex=ttl_sec)
        except Exception as exc:
            logger.warning("Shared cache unavailable (Redis error on set): %s", exc)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class TwoTierCache:
    def __init__(
        self,
        local: ResponseCache | None = None,
        shared: SharedCache | None = None,
        ttl_sec: int = DEFAULT_TTL_SEC,
    ) -> None:
        self.local = local if local is not None else ResponseCache(ttl_sec=ttl_sec)
        self.shared = shared
        self.ttl_sec = ttl_sec

    async def get(self, role: str, context: str, scenario: str) -> CachedResponse | None:
        key = cache_key(role, context, scenario)
        entry = self.local.get(key)
        if entry is not None:
            logger.info("In-memory cache hit for agent %s", role)
            return entry
        if self.shared is None:
            return None

        raw = await self.shared.get(key)
        if raw is None:
            return None
        try:
            entry = CachedResponse.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding malformed shared cache entry for %s: %s", role, exc)
            return None
        if time.time() - entry.created_at > self.ttl_sec:
            return None
        logger.info("Shared cache hit for agent %s", role)
        self.local.put(key, entry)
        return entry

    async def put(
        self,
        role: str,
        context: str,
        scenario: str,
        content: str,
        model: str,
        metadata: ResponseMetadata | None = None,
    ) -> None:
        key = cache_key(role, context, scenario)
        entry = CachedResponse(role=role, content=content, model=model, created_at=time.time(), metadata=metadata)
        self.local.put(key, entry)
        if self.shared is not None:
            await self.shared.set(key, entry.to_json(), self.ttl_sec)
