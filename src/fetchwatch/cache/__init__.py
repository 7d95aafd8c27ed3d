"""Response caching for fetchwatch.

This package provides :class:`ResponseCache`, a TTL-aware cache keyed by
request fingerprint and namespaced per context, plus the storage adapters
it can persist through (:class:`MemoryStorage`, :class:`DiskStorage` on
:mod:`diskcache`).

The cache is consumed by
:class:`~fetchwatch.client.coordinator.RequestCoordinator` and controlled
by the ``local_cache`` setting of each request and context.
"""

from fetchwatch.cache.cache import CacheEntry, ResponseCache, resolve_expiry
from fetchwatch.cache.storage import DiskStorage, MemoryStorage, StorageAdapter

__all__ = [
    "CacheEntry",
    "DiskStorage",
    "MemoryStorage",
    "ResponseCache",
    "StorageAdapter",
    "resolve_expiry",
]
