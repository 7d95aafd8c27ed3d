"""The request context: descriptor factories and everything they share.

A :class:`Fetchwatch` instance owns one cache namespace, one
:class:`~fetchwatch.client.coordinator.RequestCoordinator`, one
:class:`~fetchwatch.invalidation.HitSourceInvalidator` and one
:class:`~fetchwatch.watch.WatchController`.  Contexts are explicit objects;
two instances never see each other's cache entries or in-flight requests.

Example::

    async with Fetchwatch(base_url="https://api.example.com",
                          responded=extract_response_data) as api:
        todos = await api.get("/todos", params={"page": 1}).send()
"""

from __future__ import annotations

import itertools
import re
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Callable, Optional, Union

from fetchwatch.cache import ResponseCache, StorageAdapter
from fetchwatch.client.coordinator import RequestCoordinator
from fetchwatch.client.transport import HttpxTransport, TransportAdapter
from fetchwatch.config import merge_options, resolve_options
from fetchwatch.exceptions import ConfigurationError
from fetchwatch.invalidation import HitSourceInvalidator
from fetchwatch.method import Method
from fetchwatch.models import ContextOptions, Verb
from fetchwatch.output import get_output
from fetchwatch.state import Observable
from fetchwatch.watch import WatchController, WatchHandle, WatchPolicy

_context_ids = itertools.count(1)

CacheTarget = Union[Method, str, re.Pattern, None]


class Fetchwatch:
    """A request context.

    Args:
        options: Base :class:`~fetchwatch.models.ContextOptions`.  Keyword
            *overrides* are layered over it.
        transport: Transport adapter; defaults to
            :class:`~fetchwatch.client.transport.HttpxTransport`.
        storage: Persistent storage for the response cache.  Ignored when
            *cache* is given.
        cache: A :class:`~fetchwatch.cache.ResponseCache` to share with other
            contexts (entries stay namespaced by context id).
        clock: Time source for a newly created cache, for tests.
        **overrides: Any :class:`~fetchwatch.models.ContextOptions` field.

    Raises:
        ConfigurationError: For invalid options, or when both *cache* and
            *storage*/*clock* are given.
    """

    def __init__(
        self,
        options: Optional[ContextOptions] = None,
        *,
        transport: Optional[TransportAdapter] = None,
        storage: Optional[StorageAdapter] = None,
        cache: Optional[ResponseCache] = None,
        clock: Optional[Callable[[], float]] = None,
        **overrides: Any,
    ) -> None:
        resolved = merge_options(options, **overrides)
        if resolved.id is None:
            resolved = resolved.model_copy(update={"id": f"fetchwatch-{next(_context_ids)}"})
        self.options = resolved

        if cache is not None and (storage is not None or clock is not None):
            raise ConfigurationError("Pass either a cache or storage/clock for a new one, not both")
        self.cache = cache if cache is not None else ResponseCache(storage, clock or time.time)
        self.transport: TransportAdapter = transport if transport is not None else HttpxTransport()
        self.invalidator = HitSourceInvalidator(self.id, self.cache)
        self.coordinator = RequestCoordinator(
            self.id, self.options, self.cache, self.invalidator, self.transport
        )
        self.watcher = WatchController(self.coordinator)

    @classmethod
    def from_config(
        cls,
        *,
        project_dir: Optional[Path] = None,
        use_environment: bool = True,
        transport: Optional[TransportAdapter] = None,
        storage: Optional[StorageAdapter] = None,
        **overrides: Any,
    ) -> Fetchwatch:
        """Build a context from ``fetchwatch.json``, the environment and *overrides*.

        See :func:`~fetchwatch.config.resolve_options` for the precedence.
        """
        options = resolve_options(
            project_dir=project_dir, use_environment=use_environment, **overrides
        )
        return cls(options, transport=transport, storage=storage)

    @property
    def id(self) -> str:
        assert self.options.id is not None
        return self.options.id

    # ------------------------------------------------------------------ #
    # Descriptor factories
    # ------------------------------------------------------------------ #

    def request(self, verb: Union[str, Verb], url: str, data: Any = None, **config: Any) -> Method:
        """Create a :class:`~fetchwatch.method.Method` for any verb."""
        verb_name = verb.value if isinstance(verb, Verb) else str(verb).upper()
        if verb_name not in Verb.__members__:
            raise ConfigurationError(f"Unsupported verb: {verb}")
        return Method(verb_name, self, url, config, data)

    def get(self, url: str, **config: Any) -> Method:
        return self.request(Verb.GET, url, **config)

    def head(self, url: str, **config: Any) -> Method:
        return self.request(Verb.HEAD, url, **config)

    def options_(self, url: str, **config: Any) -> Method:
        """``OPTIONS`` request.  Named with a trailing underscore because
        :attr:`options` holds the context options."""
        return self.request(Verb.OPTIONS, url, **config)

    def post(self, url: str, data: Any = None, **config: Any) -> Method:
        return self.request(Verb.POST, url, data, **config)

    def put(self, url: str, data: Any = None, **config: Any) -> Method:
        return self.request(Verb.PUT, url, data, **config)

    def patch(self, url: str, data: Any = None, **config: Any) -> Method:
        return self.request(Verb.PATCH, url, data, **config)

    def delete(self, url: str, data: Any = None, **config: Any) -> Method:
        return self.request(Verb.DELETE, url, data, **config)

    # ------------------------------------------------------------------ #
    # Cache helpers
    # ------------------------------------------------------------------ #

    def set_cache(self, method: Method, value: Any, expire: Any = None) -> bool:
        """Store *value* as the cached response of *method*.

        Args:
            method: Descriptor whose fingerprint is the cache key.
            value: The value later sends will be answered with.
            expire: Any ``local_cache`` setting; defaults to the method's own.

        Returns:
            Whether anything was stored (``False`` when caching is disabled).
        """
        setting = expire if expire is not None else method.config.local_cache
        entry = self.cache.set(self.id, method.key, value, setting)
        if entry is None:
            return False
        self.invalidator.register(method)
        return True

    def get_cache(self, method: Method) -> Any:
        """Return the live cached value for *method*, or ``None``."""
        return self.cache.get(self.id, method.key)

    def invalidate_cache(self, target: CacheTarget = None) -> list[str]:
        """Evict cached responses.

        Args:
            target: A :class:`~fetchwatch.method.Method`, a fingerprint, a
                method name, a compiled pattern matched against URLs and
                names, or ``None`` for every entry of this context.

        Returns:
            The evicted fingerprints.
        """
        if target is None:
            keys = self.cache.invalidate(self.id, lambda key: True)
        elif isinstance(target, Method):
            keys = self.cache.invalidate(self.id, target.key)
        else:
            relation = str(target) if isinstance(target, int) else target
            keys = [method.key for method in self.invalidator.find(relation)]
            if not keys and isinstance(relation, str):
                keys = [relation]
            for key in keys:
                self.cache.invalidate(self.id, key)

        for key in keys:
            self.invalidator.forget(key)
        get_output().debug(f"Invalidated {len(keys)} cache entries in {self.id}")
        return keys

    # ------------------------------------------------------------------ #
    # Watching
    # ------------------------------------------------------------------ #

    def watch(
        self,
        sources: Sequence[Observable],
        factory: Union[Method, Callable[..., Method]],
        *,
        debounce: Union[float, Sequence[float]] = 0,
        immediate: bool = False,
        force: Union[bool, Callable[..., bool]] = False,
    ) -> WatchHandle:
        """Send the request built by *factory* whenever a source changes.

        See :class:`~fetchwatch.watch.WatchPolicy` for the options.
        """
        policy = WatchPolicy(debounce=debounce, immediate=immediate, force=force)
        return self.watcher.watch(sources, factory, policy)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def aclose(self) -> None:
        """Stop watchers and release the transport and cache storage."""
        self.watcher.stop_all()
        aclose = getattr(self.transport, "aclose", None)
        if callable(aclose):
            await aclose()
        self.cache.close()

    async def __aenter__(self) -> Fetchwatch:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"<Fetchwatch {self.id} base_url={self.options.base_url!r}>"
