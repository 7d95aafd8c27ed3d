"""Time-bounded response cache, namespaced per context.

Entries live in memory and, when a
:class:`~fetchwatch.cache.storage.StorageAdapter` is supplied, are written
through to it under ``fetchwatch.<context_id>.<key>`` as
``{"data", "expire_at", "mode"}`` so they survive restarts.  Memory is
authoritative for liveness: expiry is checked lazily on every read and an
expired entry is evicted from memory and storage alike.

Accepted TTL settings (seconds throughout):

* ``None``, ``False``, ``0`` or a negative number -- do not cache.
* a positive number -- expire that many seconds from now; ``math.inf``
  never expires.
* a :class:`~datetime.datetime` -- expire at that instant.
* :class:`~fetchwatch.models.LocalCacheConfig` or a ``{"expire", "mode"}``
  dict -- as above, plus the :class:`~fetchwatch.models.CacheMode`.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from fetchwatch.cache.storage import StorageAdapter
from fetchwatch.exceptions import ConfigurationError
from fetchwatch.models import CacheMode, LocalCacheConfig
from fetchwatch.output import get_output

_STORAGE_PREFIX = "fetchwatch"

KeyPredicate = Callable[[str], bool]


@dataclass
class CacheEntry:
    """A cached response value and its absolute expiry (POSIX seconds)."""

    key: str
    value: Any
    expire_at: float
    mode: CacheMode = CacheMode.NORMAL

    @property
    def placeholder(self) -> bool:
        """Whether the value is provisional rather than authoritative."""
        return self.mode == CacheMode.PLACEHOLDER


def resolve_expiry(setting: Any, now: float) -> Optional[tuple[float, CacheMode]]:
    """Translate a ``local_cache`` setting into ``(expire_at, mode)``.

    Returns:
        ``None`` when the setting disables caching.

    Raises:
        ConfigurationError: For settings of an unsupported type.
    """
    if setting is None or setting is False:
        return None
    if setting is True:
        raise ConfigurationError("local_cache=True is ambiguous; give a duration in seconds")
    if isinstance(setting, dict):
        try:
            setting = LocalCacheConfig.model_validate(setting)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid local_cache setting: {exc}") from exc
    if isinstance(setting, LocalCacheConfig):
        resolved = resolve_expiry(setting.expire, now)
        if resolved is None:
            return None
        return resolved[0], setting.mode
    if isinstance(setting, datetime):
        return setting.timestamp(), CacheMode.NORMAL
    if isinstance(setting, (int, float)):
        if setting <= 0:
            return None
        return now + setting, CacheMode.NORMAL
    raise ConfigurationError(f"Unsupported local_cache setting: {setting!r}")


class ResponseCache:
    """TTL-aware key/value store for responses, one namespace per context.

    Args:
        storage: Optional persistent :class:`StorageAdapter`.
        clock: Returns the current time in POSIX seconds. Injectable for
            tests.

    Example::

        cache = ResponseCache(storage=MemoryStorage())
        cache.set("ctx", key, {"id": 1}, 60)
        cache.get("ctx", key)
        # {'id': 1}
    """

    def __init__(
        self,
        storage: Optional[StorageAdapter] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._entries: dict[str, dict[str, CacheEntry]] = {}

    @property
    def storage(self) -> Optional[StorageAdapter]:
        """The persistent storage adapter, if any."""
        return self._storage

    def get(self, context_id: str, key: str) -> Optional[Any]:
        """Return the live cached value for *key*, or ``None``.

        Expired entries are evicted as a side effect.
        """
        entry = self.lookup(context_id, key)
        return entry.value if entry is not None else None

    def lookup(self, context_id: str, key: str) -> Optional[CacheEntry]:
        """Return the live :class:`CacheEntry` for *key*, or ``None``."""
        namespace = self._entries.setdefault(context_id, {})
        entry = namespace.get(key)
        if entry is None:
            entry = self._hydrate(context_id, key)
            if entry is None:
                return None
            namespace[key] = entry

        if entry.expire_at <= self._clock():
            get_output().debug(f"Cache entry expired: {context_id}/{key[:12]}")
            self._remove(context_id, key)
            return None
        return entry

    def set(self, context_id: str, key: str, value: Any, ttl_config: Any) -> Optional[CacheEntry]:
        """Store *value* under *key* according to *ttl_config*.

        A setting that disables caching makes this a no-op.

        Returns:
            The stored entry, or ``None`` when nothing was stored.
        """
        now = self._clock()
        resolved = resolve_expiry(ttl_config, now)
        if resolved is None:
            return None
        expire_at, mode = resolved
        if expire_at <= now:
            return None

        entry = CacheEntry(key=key, value=value, expire_at=expire_at, mode=mode)
        self._entries.setdefault(context_id, {})[key] = entry
        if self._storage is not None:
            self._storage.set(
                _storage_key(context_id, key),
                {
                    "data": value,
                    "expire_at": None if math.isinf(expire_at) else expire_at,
                    "mode": mode.value,
                },
            )
        return entry

    def invalidate(self, context_id: str, target: Union[str, KeyPredicate]) -> list[str]:
        """Remove the entry for a key, or every entry whose key matches a predicate.

        Idempotent: unknown keys are ignored.

        Returns:
            The keys that were removed (or attempted, for a plain key).
        """
        if callable(target):
            matched = [key for key in self._known_keys(context_id) if target(key)]
        else:
            matched = [target]
        for key in matched:
            self._remove(context_id, key)
        return matched

    def clear(self, context_id: Optional[str] = None) -> None:
        """Remove every entry of *context_id*, or of all contexts when ``None``."""
        context_ids = [context_id] if context_id is not None else list(self._entries)
        for cid in context_ids:
            for key in self._known_keys(cid):
                self._remove(cid, key)
        if context_id is None and self._storage is not None:
            prefix = f"{_STORAGE_PREFIX}."
            for skey in list(self._storage.keys()):
                if skey.startswith(prefix):
                    self._storage.remove(skey)

    def stats(self) -> dict[str, Any]:
        """Return entry counts per context (in memory) and whether storage is attached."""
        contexts = {cid: len(entries) for cid, entries in self._entries.items() if entries}
        return {
            "size": sum(contexts.values()),
            "contexts": contexts,
            "persistent": self._storage is not None,
        }

    def close(self) -> None:
        """Close the storage adapter if it supports closing."""
        close = getattr(self._storage, "close", None)
        if callable(close):
            close()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _remove(self, context_id: str, key: str) -> None:
        self._entries.get(context_id, {}).pop(key, None)
        if self._storage is not None:
            self._storage.remove(_storage_key(context_id, key))

    def _known_keys(self, context_id: str) -> list[str]:
        """Keys present in memory or storage for *context_id*."""
        keys = set(self._entries.get(context_id, {}))
        if self._storage is not None:
            prefix = _storage_key(context_id, "")
            keys.update(skey[len(prefix):] for skey in self._storage.keys() if skey.startswith(prefix))
        return sorted(keys)

    def _hydrate(self, context_id: str, key: str) -> Optional[CacheEntry]:
        """Rebuild an entry from storage, if one was persisted."""
        if self._storage is None:
            return None
        stored = self._storage.get(_storage_key(context_id, key))
        if not isinstance(stored, dict) or "data" not in stored:
            return None
        expire_at = stored.get("expire_at")
        try:
            mode = CacheMode(stored.get("mode", CacheMode.NORMAL.value))
        except ValueError:
            mode = CacheMode.NORMAL
        return CacheEntry(
            key=key,
            value=stored["data"],
            expire_at=math.inf if expire_at is None else float(expire_at),
            mode=mode,
        )


def _storage_key(context_id: str, key: str) -> str:
    return f"{_STORAGE_PREFIX}.{context_id}.{key}"
