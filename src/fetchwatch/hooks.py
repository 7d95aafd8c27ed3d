"""Request hooks: observable request state for UI components.

A :class:`RequestHook` wraps a request and exposes its lifecycle as
:class:`~fetchwatch.state.Ref` values (``loading``, ``data``, ``error``,
``downloading``) plus success/error/complete callbacks.

* :func:`use_request` sends right away (unless ``immediate=False``) and
  again on every :meth:`RequestHook.send`.
* :func:`use_watcher` sends whenever one of the watched sources changes,
  with optional debounce.

Example::

    hook = use_request(api.get("/todos"))
    hook.on_success(lambda event: print(event.data))
    await hook.send()

    page = Ref(1)
    todos = use_watcher(lambda page: api.get("/todos", params={"page": page}), [page],
                        debounce=0.3)
    page.value = 2
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional, Union

from fetchwatch.client.response import share_payload
from fetchwatch.exceptions import AbortError, ConfigurationError
from fetchwatch.method import Method
from fetchwatch.models import DownloadProgress
from fetchwatch.output import get_output
from fetchwatch.state import Observable, Ref
from fetchwatch.watch import WatchController, WatchHandle, WatchPolicy

Handler = Union[Method, Callable[..., Method]]
Force = Union[bool, Callable[..., bool]]

_STATE_FIELDS = ("loading", "data", "error", "downloading")


@dataclass
class SuccessEvent:
    method: Method
    send_args: tuple
    data: Any
    from_cache: bool = False


@dataclass
class ErrorEvent:
    method: Optional[Method]
    send_args: tuple
    error: BaseException


@dataclass
class CompleteEvent:
    status: Literal["success", "error"]
    method: Optional[Method]
    send_args: tuple
    data: Any = None
    error: Optional[BaseException] = None
    from_cache: bool = False


class RequestHook:
    """Observable state and controls for one request.

    Args:
        handler: A :class:`~fetchwatch.method.Method`, or a factory called
            with the send arguments that returns one.
        force: Bypass the cache.  A callable is evaluated per send with the
            send arguments.
        initial_data: Value of ``data`` before the first success.
    """

    def __init__(self, handler: Handler, *, force: Force = False, initial_data: Any = None) -> None:
        if not isinstance(handler, Method) and not callable(handler):
            raise ConfigurationError("A request hook needs a Method or a callable returning one")
        self._handler = handler
        self._force = force

        self.loading: Ref[bool] = Ref(False)
        self.data: Ref[Any] = Ref(initial_data)
        self.error: Ref[Optional[BaseException]] = Ref(None)
        self.downloading: Ref[DownloadProgress] = Ref(DownloadProgress())

        self._success_handlers: list[Callable[[SuccessEvent], Any]] = []
        self._error_handlers: list[Callable[[ErrorEvent], Any]] = []
        self._complete_handlers: list[Callable[[CompleteEvent], Any]] = []
        self._method: Optional[Method] = None
        self._tasks: set[asyncio.Task[Any]] = set()
        # Sends whose task has not reached the coordinator yet.
        self._queued: set[asyncio.Task[Any]] = set()
        self._abort_requested: set[asyncio.Task[Any]] = set()
        self._watch: Optional[WatchHandle] = None

    @property
    def method(self) -> Optional[Method]:
        """The descriptor of the most recent send."""
        return self._method

    @property
    def watch_handle(self) -> Optional[WatchHandle]:
        return self._watch

    def on_success(self, callback: Callable[[SuccessEvent], Any]) -> None:
        self._success_handlers.append(callback)

    def on_error(self, callback: Callable[[ErrorEvent], Any]) -> None:
        self._error_handlers.append(callback)

    def on_complete(self, callback: Callable[[CompleteEvent], Any]) -> None:
        self._complete_handlers.append(callback)

    def send(self, *args: Any) -> asyncio.Task[Any]:
        """Send the request.

        ``loading`` turns ``True`` and ``error`` is cleared before this
        returns.

        Returns:
            A task resolving to the transformed response, or raising its error.
        """
        return self._start(args)

    def abort(self) -> None:
        """Abort the request of the most recent send, if any.

        Sends made in the same tick, whose request has not started yet, are
        aborted too and reject with :class:`~fetchwatch.exceptions.AbortError`.
        """
        self._abort_requested.update(self._queued)
        if self._method is not None:
            self._method.abort()

    def update(self, **state: Any) -> None:
        """Overwrite state fields (``loading``, ``data``, ``error``, ``downloading``).

        Raises:
            ConfigurationError: For unknown field names.
        """
        unknown = set(state) - set(_STATE_FIELDS)
        if unknown:
            raise ConfigurationError(f"Unknown hook state: {', '.join(sorted(unknown))}")
        for name, value in state.items():
            getattr(self, name).value = value

    def stop(self) -> None:
        """Stop watching sources (watcher hooks only)."""
        if self._watch is not None:
            self._watch.stop()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _start(
        self,
        args: tuple,
        method: Optional[Method] = None,
        force: Optional[bool] = None,
    ) -> asyncio.Task[Any]:
        self.loading.value = True
        self.error.value = None
        self.downloading.value = DownloadProgress()
        task = asyncio.get_running_loop().create_task(self._execute(args, method, force))
        self._tasks.add(task)
        self._queued.add(task)
        task.add_done_callback(self._finished)
        return task

    async def _execute(self, args: tuple, method: Optional[Method], force: Optional[bool]) -> Any:
        task = asyncio.current_task()
        self._queued.discard(task)
        aborted = task in self._abort_requested
        self._abort_requested.discard(task)
        try:
            if method is None:
                method = self._build(args)
            if force is None:
                force = bool(self._force(*args)) if callable(self._force) else bool(self._force)
        except Exception as exc:
            self._fail(None, args, exc)
            raise

        self._method = method
        if aborted:
            error = AbortError(f"{method.verb} {method.url} was aborted", method)
            self._fail(method, args, error)
            raise error

        coordinator = method.context.coordinator
        from_cache = False
        if not force:
            if coordinator.cached_entry(method) is not None:
                from_cache = True
            else:
                entry = coordinator.peek(method)
                if entry is not None and entry.placeholder:
                    self.data.value = share_payload(entry.value)

        try:
            value = await coordinator.send(method, force_request=force, on_download=self._progress)
        except Exception as exc:
            self._fail(method, args, exc)
            raise
        self._succeed(method, args, value, from_cache)
        return value

    def _build(self, args: tuple) -> Method:
        if isinstance(self._handler, Method):
            return self._handler
        method = self._handler(*args)
        if not isinstance(method, Method):
            raise ConfigurationError(
                f"Request handler returned {type(method).__name__}, not a Method"
            )
        return method

    def _progress(self, total: int, loaded: int) -> None:
        self.downloading.value = DownloadProgress(total=total, loaded=loaded)

    def _succeed(self, method: Method, args: tuple, value: Any, from_cache: bool) -> None:
        self.data.value = value
        self.loading.value = False
        self._emit(self._success_handlers, SuccessEvent(method, args, value, from_cache))
        self._emit(
            self._complete_handlers,
            CompleteEvent("success", method, args, data=value, from_cache=from_cache),
        )

    def _fail(self, method: Optional[Method], args: tuple, error: BaseException) -> None:
        self.error.value = error
        self.loading.value = False
        get_output().debug(f"Request hook error: {error}")
        self._emit(self._error_handlers, ErrorEvent(method, args, error))
        self._emit(self._complete_handlers, CompleteEvent("error", method, args, error=error))

    def _emit(self, handlers: list[Callable[[Any], Any]], event: Any) -> None:
        for handler in list(handlers):
            try:
                handler(event)
            except Exception as exc:
                get_output().warning(f"Hook callback failed: {exc}")

    def _finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        self._queued.discard(task)
        self._abort_requested.discard(task)
        # The outcome is already reflected in the state; mark it retrieved.
        if not task.cancelled():
            task.exception()


def use_request(
    handler: Handler,
    *,
    immediate: bool = True,
    force: Force = False,
    initial_data: Any = None,
) -> RequestHook:
    """Create a :class:`RequestHook` and, with ``immediate=True``, send it once.

    Must be called inside a running event loop when ``immediate`` is set.
    """
    hook = RequestHook(handler, force=force, initial_data=initial_data)
    if immediate:
        hook.send()
    return hook


def use_watcher(
    handler: Handler,
    sources: Sequence[Observable],
    *,
    immediate: bool = False,
    debounce: Union[float, Sequence[float]] = 0,
    force: Force = False,
    initial_data: Any = None,
) -> RequestHook:
    """Create a :class:`RequestHook` that sends whenever a source changes.

    Args:
        handler: A :class:`~fetchwatch.method.Method`, or a factory called
            with the current source values.
        sources: Observables to follow.
        immediate: Also send once at creation.
        debounce: Seconds to wait after a change; one value, or one per source.
        force: As for :func:`use_request`; a callable receives the source values.
        initial_data: Value of ``data`` before the first success.

    Raises:
        ConfigurationError: When *sources* is empty.
    """
    hook = RequestHook(handler, force=force, initial_data=initial_data)
    policy = WatchPolicy(debounce=debounce, immediate=immediate, force=force)

    def dispatch(method: Method, forced: bool, values: tuple) -> None:
        hook._start(values, method, forced)

    hook._watch = WatchController().watch(sources, handler, policy, dispatch)
    return hook
