"""Storage adapters backing the response cache.

The :class:`~fetchwatch.cache.ResponseCache` writes every entry through a
:class:`StorageAdapter` so that cached responses survive process restarts.
Two adapters ship with fetchwatch:

* :class:`MemoryStorage` -- a plain dict, useful for tests and for sharing
  one snapshot between several caches in a process.
* :class:`DiskStorage` -- a :class:`diskcache.Cache` directory, by default
  ``<cache_dir>/responses`` (see :func:`fetchwatch.config.get_cache_dir`).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator, Optional, Protocol, runtime_checkable

import diskcache

from fetchwatch.config import get_cache_dir


@runtime_checkable
class StorageAdapter(Protocol):
    """Contract for persistent cache storage.

    Values are plain dicts (``{"data", "expire_at", "mode"}``); adapters must
    be able to round-trip whatever response values the application caches.
    """

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> Iterator[str]: ...


class MemoryStorage:
    """Dict-backed :class:`StorageAdapter`."""

    def __init__(self) -> None:
        self._items: dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._items.get(key)

    def set(self, key: str, value: Any) -> None:
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)


class DiskStorage:
    """:mod:`diskcache`-backed :class:`StorageAdapter`.

    Args:
        directory: Cache directory. Defaults to ``<cache_dir>/responses``.

    Example::

        storage = DiskStorage()
        api = Fetchwatch(id="dashboard", storage=storage)
    """

    def __init__(self, directory: Optional[str | Path] = None) -> None:
        self._directory = Path(directory) if directory is not None else get_cache_dir() / "responses"
        self._cache: Optional[diskcache.Cache] = diskcache.Cache(str(self._directory))

    @property
    def directory(self) -> Path:
        """The directory holding the diskcache database."""
        return self._directory

    def get(self, key: str) -> Optional[Any]:
        return self._require().get(key)

    def set(self, key: str, value: Any) -> None:
        self._require().set(key, value)

    def remove(self, key: str) -> None:
        self._require().delete(key)

    def keys(self) -> Iterator[str]:
        return iter(list(self._require().iterkeys()))

    def close(self) -> None:
        """Close the underlying :class:`diskcache.Cache`. Safe to call twice."""
        if self._cache is not None:
            self._cache.close()
            self._cache = None

    def _require(self) -> diskcache.Cache:
        if self._cache is None:
            raise RuntimeError(f"DiskStorage at {self._directory} is closed")
        return self._cache
