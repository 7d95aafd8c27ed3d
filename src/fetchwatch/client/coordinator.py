"""Request coordination: cache read-through, request sharing, settlement.

:class:`RequestCoordinator` is the only component that starts transport
calls.  For every :meth:`~RequestCoordinator.send` it:

1. derives the request fingerprint;
2. returns a live, authoritative cache entry without touching the transport
   (unless the send is forced);
3. joins an in-flight call with the same fingerprint when request sharing
   is enabled, so N concurrent identical sends cost one transport call;
4. otherwise starts a new call and, when it settles, runs the
   ``responded`` and ``transform_data`` hooks, writes the cache, applies
   ``hit_source`` invalidation and settles every waiter with the same value
   or error.

Everything except the awaited transport call runs synchronously, so there
is no window between the in-flight check and the registration of a new
call.  Waiters await the shared future through :func:`asyncio.shield`:
cancelling one waiter never cancels the request for the others.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

from fetchwatch.cache import CacheEntry, ResponseCache, resolve_expiry
from fetchwatch.client.response import buffer_payload, share_payload
from fetchwatch.client.transport import DownloadCallback, TransportAdapter, TransportCall
from fetchwatch.exceptions import (
    AbortError,
    ConfigurationError,
    FetchwatchError,
    ResponseTransformError,
    TransportError,
)
from fetchwatch.invalidation import HitSourceInvalidator
from fetchwatch.models import ContextOptions, RequestElements
from fetchwatch.output import get_output

if TYPE_CHECKING:
    from fetchwatch.method import Method


@dataclass(eq=False)
class InFlightEntry:
    """A transport call and everybody waiting for it."""

    key: str
    method: Method
    future: asyncio.Future[Any]
    shared: bool = True
    waiter_count: int = 1
    call: Optional[TransportCall] = None
    task: Optional[asyncio.Task[None]] = None
    aborted: bool = False
    listeners: list[DownloadCallback] = field(default_factory=list)


class RequestCoordinator:
    """Deduplicating, caching request executor for one context.

    Args:
        context_id: Cache namespace of the owning context.
        options: The owning context's options (hooks are read from here).
        cache: Shared :class:`~fetchwatch.cache.ResponseCache`.
        invalidator: ``hit_source`` invalidator for the same namespace.
        transport: Adapter that performs the actual I/O.
    """

    def __init__(
        self,
        context_id: str,
        options: ContextOptions,
        cache: ResponseCache,
        invalidator: HitSourceInvalidator,
        transport: TransportAdapter,
    ) -> None:
        self._context_id = context_id
        self._options = options
        self._cache = cache
        self._invalidator = invalidator
        self._transport = transport
        self._in_flight: dict[str, list[InFlightEntry]] = {}

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def send(
        self,
        method: Method,
        force_request: bool = False,
        on_download: Optional[DownloadCallback] = None,
    ) -> Any:
        """Send *method*, reading through the cache and sharing identical calls.

        Args:
            method: The request descriptor.
            force_request: Bypass the cache lookup.
            on_download: Optional ``callback(total, loaded)`` for download
                progress of the underlying call.

        Returns:
            The transformed response value.

        Raises:
            TransportError: Network failure (``TimeoutError_`` on timeout).
            AbortError: The call was aborted.
            ResponseTransformError: A response or error hook raised.
        """
        key = method.key
        output = get_output()

        # 1. Cache read-through
        if not force_request:
            cached = self.cached_entry(method)
            if cached is not None:
                output.debug(f"Cache hit: {method.verb} {method.url}")
                self._invalidator.register(method)
                return share_payload(cached.value)

        # 2. Join an identical in-flight call
        entry = self._joinable(key) if method.config.share_request else None
        if entry is not None:
            entry.waiter_count += 1
            if on_download is not None:
                entry.listeners.append(on_download)
            output.debug(
                f"Sharing in-flight request: {method.verb} {method.url} "
                f"({entry.waiter_count} waiters)"
            )
        else:
            # 3. Start a new call
            entry = self._start(method, bool(method.config.share_request), on_download)

        value = await asyncio.shield(entry.future)
        return share_payload(value)

    def peek(self, method: Method) -> Optional[CacheEntry]:
        """Return the live cache entry for *method*, placeholder or not."""
        return self._cache.lookup(self._context_id, method.key)

    def cached_entry(self, method: Method) -> Optional[CacheEntry]:
        """Return the entry a non-forced send would be answered from, if any."""
        setting = method.config.local_cache
        if resolve_expiry(setting, 0.0) is None:
            return None
        entry = self._cache.lookup(self._context_id, method.key)
        if entry is None or entry.placeholder:
            return None
        return entry

    def abort(self, method: Method) -> None:
        """Abort every in-flight call with *method*'s fingerprint."""
        self.abort_key(method.key)

    def abort_key(self, key: str) -> None:
        """Abort every in-flight call for *key*; all their waiters get ``AbortError``.

        A no-op when nothing is in flight for *key*.
        """
        for entry in list(self._in_flight.get(key, [])):
            entry.aborted = True
            if entry.call is not None:
                entry.call.abort()
            method = entry.method
            get_output().debug(f"Aborted: {method.verb} {method.url}")
            self._reject(entry, AbortError(f"{method.verb} {method.url} was aborted", method))

    def in_flight(self, method: Method) -> bool:
        """Whether a call with *method*'s fingerprint is outstanding."""
        return bool(self._in_flight.get(method.key))

    def waiter_count(self, method: Method) -> int:
        """Number of sends waiting on outstanding calls for *method*'s fingerprint."""
        return sum(entry.waiter_count for entry in self._in_flight.get(method.key, []))

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _joinable(self, key: str) -> Optional[InFlightEntry]:
        for entry in self._in_flight.get(key, []):
            if entry.shared and not entry.future.done():
                return entry
        return None

    def _start(
        self,
        method: Method,
        shared: bool,
        on_download: Optional[DownloadCallback],
    ) -> InFlightEntry:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        future.add_done_callback(_consume_exception)
        entry = InFlightEntry(key=method.key, method=method, future=future, shared=shared)
        if on_download is not None:
            entry.listeners.append(on_download)
        self._in_flight.setdefault(entry.key, []).append(entry)

        try:
            if self._options.before_request is not None:
                self._options.before_request(method)
            elements = _build_elements(method)
            entry.call = self._transport.execute(elements, method)
        except FetchwatchError as exc:
            self._reject(entry, exc.with_method(method))
            return entry
        except Exception as exc:
            error = TransportError(f"Could not start {method.verb} {method.url}: {exc}", method)
            error.__cause__ = exc
            self._reject(entry, error)
            return entry

        entry.call.on_download(lambda total, loaded: self._fan_out(entry, total, loaded))
        entry.task = loop.create_task(self._drive(entry))
        return entry

    async def _drive(self, entry: InFlightEntry) -> None:
        method = entry.method
        assert entry.call is not None
        try:
            raw = await entry.call.response()
        except Exception as exc:
            if not entry.future.done():
                await self._settle_failure(entry, exc)
            return

        if entry.future.done():
            return

        try:
            value = await _apply(self._options.responded, raw)
            value = await _apply(method.config.transform_data, value)
        except Exception as exc:
            self._reject(entry, _transform_error(exc, method))
            return

        if entry.future.done():
            return

        try:
            value = buffer_payload(value)
        except Exception as exc:
            self._reject(entry, _transform_error(exc, method))
            return

        # A failed cache write or invalidation must not strand the waiters.
        try:
            stored = self._cache.set(self._context_id, entry.key, value, method.config.local_cache)
        except ConfigurationError as exc:
            self._reject(entry, exc.with_method(method))
            return
        except Exception as exc:
            get_output().warning(f"Cache write failed for {method.verb} {method.url}: {exc}")
        else:
            if stored is not None:
                self._invalidator.register(method)
        try:
            self._invalidator.on_settled(method)
        except Exception as exc:
            get_output().warning(
                f"hit_source invalidation failed for {method.verb} {method.url}: {exc}"
            )
        self._resolve(entry, value)

    async def _settle_failure(self, entry: InFlightEntry, exc: Exception) -> None:
        method = entry.method
        if isinstance(exc, FetchwatchError):
            error = exc.with_method(method)
        else:
            error = TransportError(f"{method.verb} {method.url} failed: {exc}", method)
            error.__cause__ = exc

        hook = self._options.responded_error
        if hook is None or isinstance(error, AbortError):
            self._reject(entry, error)
            return

        # The error hook may recover with a value (not cached) or raise.
        try:
            value = await _apply(hook, error)
        except Exception as hook_exc:
            if not entry.future.done():
                self._reject(entry, _transform_error(hook_exc, method))
            return
        if not entry.future.done():
            self._resolve(entry, buffer_payload(value))

    def _resolve(self, entry: InFlightEntry, value: Any) -> None:
        if not entry.future.done():
            entry.future.set_result(value)
        self._remove(entry)

    def _reject(self, entry: InFlightEntry, error: BaseException) -> None:
        if not entry.future.done():
            entry.future.set_exception(error)
        self._remove(entry)

    def _remove(self, entry: InFlightEntry) -> None:
        entries = self._in_flight.get(entry.key)
        if entries is None:
            return
        if entry in entries:
            entries.remove(entry)
        if not entries:
            del self._in_flight[entry.key]

    def _fan_out(self, entry: InFlightEntry, total: int, loaded: int) -> None:
        for listener in list(entry.listeners):
            try:
                listener(total, loaded)
            except Exception as exc:
                get_output().warning(f"Download listener failed: {exc}")


def _build_elements(method: Method) -> RequestElements:
    config = method.config
    return RequestElements(
        url=method.full_url,
        verb=method.verb,
        headers=dict(config.headers),
        params=dict(config.params),
        data=method.data,
        timeout=config.timeout,
        extra=dict(config.model_extra or {}),
    )


async def _apply(hook: Optional[Callable[[Any], Any]], value: Any) -> Any:
    """Run a sync or async single-argument hook; ``None`` means identity."""
    if hook is None:
        return value
    result = hook(value)
    if inspect.isawaitable(result):
        result = await result
    return result


def _transform_error(exc: Exception, method: Method) -> FetchwatchError:
    if isinstance(exc, FetchwatchError):
        return exc.with_method(method)
    error = ResponseTransformError(str(exc) or type(exc).__name__, method)
    error.__cause__ = exc
    return error


def _consume_exception(future: asyncio.Future[Any]) -> None:
    # Every waiter may have been cancelled; retrieve the exception so the
    # loop does not report it as never retrieved.
    if not future.cancelled():
        future.exception()
