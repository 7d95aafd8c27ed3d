"""fetchwatch -- request lifecycle management for async UIs and services.

Build request descriptors from a context, and let fetchwatch take care of
cache keys, a time-bounded response cache, sharing of concurrent identical
requests, ``hit_source`` invalidation and watch-triggered requests with
debounce.

Typical use::

    api = Fetchwatch(base_url="https://api.example.com", responded=extract_response_data)
    todos = await api.get("/todos", params={"page": 1}).send()

    page = Ref(1)
    hook = use_watcher(lambda p: api.get("/todos", params={"page": p}), [page], debounce=0.3)

Modules:
    context: The :class:`Fetchwatch` context and its verb factories.
    method: Request descriptors.
    keys: Fingerprint derivation.
    cache: TTL response cache and storage adapters.
    client: Request coordination and the httpx transport.
    invalidation: ``hit_source`` cache invalidation.
    watch: Debounced watchers.
    hooks: ``use_request`` / ``use_watcher`` request state.
    state: Minimal observable containers.
    config: Option resolution from files and the environment.
    output: Diagnostics on stderr.
    exceptions: Exception hierarchy.
"""

from fetchwatch.client.response import extract_response_data
from fetchwatch.context import Fetchwatch
from fetchwatch.exceptions import (
    AbortError,
    ConfigurationError,
    FetchwatchError,
    ResponseTransformError,
    TimeoutError_,
    TransportError,
)
from fetchwatch.hooks import RequestHook, use_request, use_watcher
from fetchwatch.method import Method
from fetchwatch.models import CacheMode, ContextOptions, LocalCacheConfig
from fetchwatch.state import Computed, Ref
from fetchwatch.watch import WatchPolicy

__version__ = "0.1.0"

__all__ = [
    "AbortError",
    "CacheMode",
    "Computed",
    "ConfigurationError",
    "ContextOptions",
    "Fetchwatch",
    "FetchwatchError",
    "LocalCacheConfig",
    "Method",
    "Ref",
    "RequestHook",
    "ResponseTransformError",
    "TimeoutError_",
    "TransportError",
    "WatchPolicy",
    "extract_response_data",
    "use_request",
    "use_watcher",
]
