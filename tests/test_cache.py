"""Tests for boardroom/cache.py — no Redis needed."""

import time

import pytest

from boardroom.cache import CachedResponse, ResponseCache, TwoTierCache, cache_key
from boardroom.models import ResponseMetadata


class FakeShared:
    """In-memory stand-in for the shared tier."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_sec: int) -> None:
        self.data[key] = value
        self.ttls[key] = ttl_sec


def _entry(content: str = "Answer", created_at: float = 1000.0) -> CachedResponse:
    return CachedResponse(role="ceo", content=content, model="mock-model", created_at=created_at)


def test_cache_key_is_stable_and_distinct():
    assert cache_key("ceo", "ctx", "scn") == cache_key("ceo", "ctx", "scn")
    assert cache_key("ceo", "ctx", "scn") != cache_key("cfo", "ctx", "scn")
    assert len(cache_key("ceo", "ctx", "scn")) == 64


def test_local_cache_hit_and_expiry():
    cache = ResponseCache(ttl_sec=60)
    cache.put("k", _entry(created_at=1000.0))

    assert cache.get("k", now=1030.0).content == "Answer"
    assert cache.get("k", now=1061.0) is None
    assert len(cache) == 0
    assert (cache.hits, cache.misses) == (1, 1)


def test_local_cache_evicts_least_recently_used():
    cache = ResponseCache(max_entries=2, ttl_sec=60)
    cache.put("a", _entry("A"))
    cache.put("b", _entry("B"))
    cache.get("a", now=1001.0)
    cache.put("c", _entry("C"))

    assert cache.get("b", now=1001.0) is None
    assert cache.get("a", now=1001.0).content == "A"
    assert cache.get("c", now=1001.0).content == "C"


def test_cleanup_removes_only_expired():
    cache = ResponseCache(ttl_sec=60)
    cache.put("old", _entry(created_at=1000.0))
    cache.put("new", _entry(created_at=1050.0))
    assert cache.cleanup(now=1070.0) == 1
    assert len(cache) == 1


def test_invalid_capacity():
    with pytest.raises(ValueError):
        ResponseCache(max_entries=0)


def test_cached_response_json_round_trip():
    entry = _entry()
    assert CachedResponse.from_json(entry.to_json()) == entry


async def test_two_tier_writes_both_tiers():
    shared = FakeShared()
    cache = TwoTierCache(shared=shared, ttl_sec=1800)

    await cache.put("ceo", "ctx", "scn", "Answer", "mock-model")

    key = cache_key("ceo", "ctx", "scn")
    assert key in shared.data
    assert shared.ttls[key] == 1800
    assert (await cache.get("ceo", "ctx", "scn")).content == "Answer"


async def test_shared_hit_backfills_local():
    shared = FakeShared()
    key = cache_key("ceo", "ctx", "scn")
    shared.data[key] = _entry(created_at=time.time()).to_json()
    cache = TwoTierCache(shared=shared)

    hit = await cache.get("ceo", "ctx", "scn")
    assert hit.content == "Answer"
    assert cache.local.get(key) is not None


async def test_stale_or_malformed_shared_entries_are_misses():
    shared = FakeShared()
    cache = TwoTierCache(shared=shared, ttl_sec=60)
    shared.data[cache_key("ceo", "ctx", "old")] = _entry(created_at=time.time() - 120).to_json()
    shared.data[cache_key("ceo", "ctx", "bad")] = "{not json"

    assert await cache.get("ceo", "ctx", "old") is None
    assert await cache.get("ceo", "ctx", "bad") is None


async def test_local_only_cache_misses_cleanly():
    cache = TwoTierCache()
    assert await cache.get("ceo", "ctx", "scn") is None


async def test_shared_tier_keeps_metadata():
    shared = FakeShared()
    metadata = ResponseMetadata(confidence_label="High", confidence=0.9, risks=["Hiring lag"])
    await TwoTierCache(shared=shared).put("ceo", "ctx", "scn", "Answer", "mock-model", metadata)

    # a fresh process sees only the shared tier
    hit = await TwoTierCache(shared=shared).get("ceo", "ctx", "scn")

    assert hit.metadata == metadata
    assert hit.metadata.confidence_label == "High"
