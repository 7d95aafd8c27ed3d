"""Tests for the ResponseCache module."""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest

from fetchwatch.cache import CacheEntry, MemoryStorage, ResponseCache, resolve_expiry
from fetchwatch.exceptions import ConfigurationError
from fetchwatch.models import CacheMode, LocalCacheConfig

CTX = "ctx"
KEY = "k" * 64


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def cache(clock) -> ResponseCache:
    return ResponseCache(clock=clock)


@pytest.fixture()
def persistent_cache(storage: MemoryStorage, clock) -> ResponseCache:
    return ResponseCache(storage=storage, clock=clock)


# ------------------------------------------------------------------ #
# resolve_expiry
# ------------------------------------------------------------------ #


class TestResolveExpiry:
    @pytest.mark.parametrize("setting", [None, False, 0, -5])
    def test_disabled(self, setting) -> None:
        assert resolve_expiry(setting, 100.0) is None

    def test_seconds(self) -> None:
        assert resolve_expiry(30, 100.0) == (130.0, CacheMode.NORMAL)

    def test_infinite(self) -> None:
        assert resolve_expiry(math.inf, 100.0) == (math.inf, CacheMode.NORMAL)

    def test_datetime(self) -> None:
        moment = datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert resolve_expiry(moment, 100.0) == (moment.timestamp(), CacheMode.NORMAL)

    def test_dict_with_mode(self) -> None:
        assert resolve_expiry({"expire": 10, "mode": "placeholder"}, 0.0) == (
            10.0,
            CacheMode.PLACEHOLDER,
        )

    def test_model(self) -> None:
        assert resolve_expiry(LocalCacheConfig(expire=5), 1.0) == (6.0, CacheMode.NORMAL)

    def test_dict_without_expire_disables(self) -> None:
        assert resolve_expiry({"mode": "placeholder"}, 0.0) is None

    def test_true_is_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            resolve_expiry(True, 0.0)

    def test_unsupported_type(self) -> None:
        with pytest.raises(ConfigurationError):
            resolve_expiry("5 minutes", 0.0)

    def test_invalid_mode(self) -> None:
        with pytest.raises(ConfigurationError):
            resolve_expiry({"expire": 5, "mode": "sometimes"}, 0.0)


# ------------------------------------------------------------------ #
# Core get/set behaviour
# ------------------------------------------------------------------ #


class TestGetSet:
    def test_set_and_get(self, cache: ResponseCache) -> None:
        entry = cache.set(CTX, KEY, {"id": 1}, 60)
        assert isinstance(entry, CacheEntry)
        assert cache.get(CTX, KEY) == {"id": 1}

    def test_miss_returns_none(self, cache: ResponseCache) -> None:
        assert cache.get(CTX, KEY) is None

    @pytest.mark.parametrize("setting", [None, False, 0])
    def test_disabled_setting_stores_nothing(self, cache: ResponseCache, setting) -> None:
        assert cache.set(CTX, KEY, "v", setting) is None
        assert cache.get(CTX, KEY) is None

    def test_past_datetime_stores_nothing(self, cache: ResponseCache, clock) -> None:
        past = datetime.fromtimestamp(clock.now - 10, tz=timezone.utc)
        assert cache.set(CTX, KEY, "v", past) is None

    def test_overwrite(self, cache: ResponseCache) -> None:
        cache.set(CTX, KEY, "old", 60)
        cache.set(CTX, KEY, "new", 60)
        assert cache.get(CTX, KEY) == "new"

    def test_contexts_are_isolated(self, cache: ResponseCache) -> None:
        cache.set("a", KEY, "from-a", 60)
        assert cache.get("b", KEY) is None

    def test_lookup_exposes_mode(self, cache: ResponseCache) -> None:
        cache.set(CTX, KEY, "v", {"expire": 60, "mode": "placeholder"})
        entry = cache.lookup(CTX, KEY)
        assert entry is not None
        assert entry.placeholder
        assert entry.mode == CacheMode.PLACEHOLDER


# ------------------------------------------------------------------ #
# Expiry
# ------------------------------------------------------------------ #


class TestExpiry:
    def test_readable_before_ttl(self, cache: ResponseCache, clock) -> None:
        cache.set(CTX, KEY, "v", 10)
        clock.advance(9.999)
        assert cache.get(CTX, KEY) == "v"

    def test_absent_at_ttl(self, cache: ResponseCache, clock) -> None:
        cache.set(CTX, KEY, "v", 10)
        clock.advance(10)
        assert cache.get(CTX, KEY) is None

    def test_absent_after_ttl(self, cache: ResponseCache, clock) -> None:
        cache.set(CTX, KEY, "v", 10)
        clock.advance(10.001)
        assert cache.get(CTX, KEY) is None
        assert cache.stats()["size"] == 0

    def test_infinite_never_expires(self, cache: ResponseCache, clock) -> None:
        cache.set(CTX, KEY, "v", math.inf)
        clock.advance(10**9)
        assert cache.get(CTX, KEY) == "v"

    def test_datetime_expiry(self, cache: ResponseCache, clock) -> None:
        until = datetime.fromtimestamp(clock.now + 5, tz=timezone.utc)
        cache.set(CTX, KEY, "v", until)
        clock.advance(4)
        assert cache.get(CTX, KEY) == "v"
        clock.advance(1)
        assert cache.get(CTX, KEY) is None


# ------------------------------------------------------------------ #
# Invalidation
# ------------------------------------------------------------------ #


class TestInvalidate:
    def test_by_key(self, cache: ResponseCache) -> None:
        cache.set(CTX, KEY, "v", 60)
        assert cache.invalidate(CTX, KEY) == [KEY]
        assert cache.get(CTX, KEY) is None

    def test_missing_key_is_noop(self, cache: ResponseCache) -> None:
        cache.invalidate(CTX, "missing")
        cache.invalidate(CTX, "missing")
        assert cache.get(CTX, "missing") is None

    def test_by_predicate(self, cache: ResponseCache) -> None:
        cache.set(CTX, "a1", 1, 60)
        cache.set(CTX, "a2", 2, 60)
        cache.set(CTX, "b1", 3, 60)
        removed = cache.invalidate(CTX, lambda key: key.startswith("a"))
        assert removed == ["a1", "a2"]
        assert cache.get(CTX, "b1") == 3

    def test_other_context_untouched(self, cache: ResponseCache) -> None:
        cache.set("a", KEY, 1, 60)
        cache.set("b", KEY, 2, 60)
        cache.invalidate("a", KEY)
        assert cache.get("b", KEY) == 2

    def test_clear_context(self, cache: ResponseCache) -> None:
        cache.set("a", "k1", 1, 60)
        cache.set("b", "k2", 2, 60)
        cache.clear("a")
        assert cache.get("a", "k1") is None
        assert cache.get("b", "k2") == 2

    def test_clear_all(self, cache: ResponseCache) -> None:
        cache.set("a", "k1", 1, 60)
        cache.set("b", "k2", 2, 60)
        cache.clear()
        assert cache.stats()["size"] == 0


# ------------------------------------------------------------------ #
# Persistence through a storage adapter
# ------------------------------------------------------------------ #


class TestPersistence:
    def test_set_writes_through(self, persistent_cache: ResponseCache, storage: MemoryStorage, clock) -> None:
        persistent_cache.set(CTX, KEY, {"id": 1}, 60)
        assert storage.get(f"fetchwatch.{CTX}.{KEY}") == {
            "data": {"id": 1},
            "expire_at": clock.now + 60,
            "mode": "normal",
        }

    def test_permanent_entry_persists_none(self, persistent_cache: ResponseCache, storage: MemoryStorage) -> None:
        persistent_cache.set(CTX, KEY, "v", math.inf)
        assert storage.get(f"fetchwatch.{CTX}.{KEY}")["expire_at"] is None

    def test_hydrates_in_new_cache(self, persistent_cache: ResponseCache, storage: MemoryStorage, clock) -> None:
        persistent_cache.set(CTX, KEY, "v", {"expire": 60, "mode": "placeholder"})
        restarted = ResponseCache(storage=storage, clock=clock)
        entry = restarted.lookup(CTX, KEY)
        assert entry is not None
        assert entry.value == "v"
        assert entry.placeholder

    def test_hydrated_permanent_entry(self, persistent_cache: ResponseCache, storage: MemoryStorage, clock) -> None:
        persistent_cache.set(CTX, KEY, "v", math.inf)
        restarted = ResponseCache(storage=storage, clock=clock)
        assert restarted.lookup(CTX, KEY).expire_at == math.inf

    def test_expired_snapshot_is_absent_and_pruned(
        self, persistent_cache: ResponseCache, storage: MemoryStorage, clock
    ) -> None:
        persistent_cache.set(CTX, KEY, "v", 10)
        clock.advance(11)
        restarted = ResponseCache(storage=storage, clock=clock)
        assert restarted.get(CTX, KEY) is None
        assert len(storage) == 0

    def test_memory_expiry_wins_over_storage(self, persistent_cache: ResponseCache, clock) -> None:
        persistent_cache.set(CTX, KEY, "v", 10)
        clock.advance(10)
        assert persistent_cache.get(CTX, KEY) is None

    def test_invalidate_removes_from_storage(self, persistent_cache: ResponseCache, storage: MemoryStorage) -> None:
        persistent_cache.set(CTX, KEY, "v", 60)
        persistent_cache.invalidate(CTX, KEY)
        assert len(storage) == 0

    def test_predicate_sees_storage_only_keys(self, persistent_cache: ResponseCache, storage: MemoryStorage, clock) -> None:
        persistent_cache.set(CTX, "stored", "v", 60)
        restarted = ResponseCache(storage=storage, clock=clock)
        assert restarted.invalidate(CTX, lambda key: True) == ["stored"]
        assert len(storage) == 0

    def test_clear_all_prunes_storage(self, persistent_cache: ResponseCache, storage: MemoryStorage) -> None:
        storage.set("unrelated", 1)
        persistent_cache.set(CTX, KEY, "v", 60)
        persistent_cache.clear()
        assert list(storage.keys()) == ["unrelated"]

    def test_stats(self, persistent_cache: ResponseCache) -> None:
        persistent_cache.set("a", "k1", 1, 60)
        persistent_cache.set("a", "k2", 2, 60)
        persistent_cache.set("b", "k3", 3, 60)
        assert persistent_cache.stats() == {"size": 3, "contexts": {"a": 2, "b": 1}, "persistent": True}
