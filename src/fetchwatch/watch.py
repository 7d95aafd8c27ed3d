"""Watch-triggered requests with debounce, immediate and force policies.

A watcher follows a list of :class:`~fetchwatch.state.Observable` sources.
Whenever one of them changes, a timer is armed with that source's debounce
duration; any further change cancels the timer and arms a new one with the
duration of the source that changed last.  When the timer fires, the
request factory is called with the sources' values *as read at fire time*
and the resulting :class:`~fetchwatch.method.Method` is dispatched.

States of a registration::

    IDLE --change--> PENDING --timer--> FIRING --> IDLE
      any state --stop()--> STOPPED (terminal)

Zero durations still go through the event loop, so changes made in the same
tick collapse into a single firing.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from fetchwatch.exceptions import ConfigurationError
from fetchwatch.method import Method
from fetchwatch.output import get_output
from fetchwatch.state import Observable, Unsubscribe

if TYPE_CHECKING:
    from fetchwatch.client.coordinator import RequestCoordinator

Factory = Union[Method, Callable[..., Method]]
# dispatch(method, force, values); may return an awaitable.
Dispatch = Callable[[Method, bool, tuple], Any]


class WatcherStatus(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    FIRING = "firing"
    STOPPED = "stopped"


@dataclass
class WatchPolicy:
    """When and how a watcher fires.

    Attributes:
        debounce: Seconds to wait after a change.  Either one duration for
            all sources or one per source index; sources past the end of
            the list use ``0``.
        immediate: Fire once, synchronously, at registration.
        force: Bypass the cache.  A callable is evaluated at fire time with
            the current source values.
    """

    debounce: Union[float, Sequence[float]] = 0
    immediate: bool = False
    force: Union[bool, Callable[..., bool]] = False

    def __post_init__(self) -> None:
        durations = self.debounce if isinstance(self.debounce, Sequence) else [self.debounce]
        for duration in durations:
            if not isinstance(duration, (int, float)) or duration < 0:
                raise ConfigurationError(f"Invalid debounce duration: {duration!r}")

    def duration_for(self, index: int) -> float:
        """Debounce duration for the source at *index*."""
        if isinstance(self.debounce, Sequence):
            return float(self.debounce[index]) if index < len(self.debounce) else 0.0
        return float(self.debounce)

    def should_force(self, *values: Any) -> bool:
        if callable(self.force):
            return bool(self.force(*values))
        return bool(self.force)


@dataclass
class WatcherState:
    """Bookkeeping for one registration."""

    last_values: tuple = ()
    pending: Optional[asyncio.TimerHandle] = None
    debounce: float = 0.0
    status: WatcherStatus = WatcherStatus.IDLE
    fired: int = 0
    tasks: set[asyncio.Future[Any]] = field(default_factory=set)


class WatchHandle:
    """A live watcher registration, returned by :meth:`WatchController.watch`."""

    def __init__(
        self,
        sources: Sequence[Observable],
        factory: Factory,
        policy: WatchPolicy,
        dispatch: Dispatch,
    ) -> None:
        self._sources = list(sources)
        self._factory = factory
        self._policy = policy
        self._dispatch = dispatch
        self.state = WatcherState(last_values=self._read_values())
        self._unsubscribers: list[Unsubscribe] = [
            source.subscribe(self._listener(index)) for index, source in enumerate(self._sources)
        ]

    @property
    def status(self) -> WatcherStatus:
        return self.state.status

    @property
    def policy(self) -> WatchPolicy:
        return self._policy

    def stop(self) -> None:
        """Cancel any pending firing and stop following the sources."""
        if self.state.status == WatcherStatus.STOPPED:
            return
        self._cancel_pending()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.state.status = WatcherStatus.STOPPED

    def fire(self) -> Optional[Method]:
        """Build and dispatch a request from the current source values.

        Returns:
            The dispatched descriptor, or ``None`` when the firing was
            aborted or the watcher is stopped.
        """
        if self.state.status == WatcherStatus.STOPPED:
            return None
        self._cancel_pending()
        self.state.status = WatcherStatus.FIRING
        try:
            values = self._read_values()
            method = self._build(values)
            force = self._policy.should_force(*values)
        except Exception as exc:
            get_output().warning(f"Watcher firing aborted: {exc}")
            self.state.status = WatcherStatus.IDLE
            return None

        self.state.last_values = values
        self.state.fired += 1
        get_output().debug(f"Watcher firing: {method.verb} {method.url} (force={force})")
        try:
            result = self._dispatch(method, force, values)
        except Exception as exc:
            get_output().warning(f"Watcher dispatch failed: {exc}")
        else:
            if inspect.isawaitable(result):
                self._track(asyncio.ensure_future(result))
        if self.state.status == WatcherStatus.FIRING:
            self.state.status = WatcherStatus.IDLE
        return method

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _listener(self, index: int) -> Callable[[Any], None]:
        def on_change(_value: Any) -> None:
            self._on_change(index)

        return on_change

    def _on_change(self, index: int) -> None:
        if self.state.status == WatcherStatus.STOPPED:
            return
        self._cancel_pending()
        duration = self._policy.duration_for(index)
        loop = asyncio.get_running_loop()
        self.state.pending = loop.call_later(duration, self.fire)
        self.state.debounce = duration
        self.state.status = WatcherStatus.PENDING
        get_output().debug(f"Watcher armed: source {index} changed, firing in {duration}s")

    def _cancel_pending(self) -> None:
        if self.state.pending is not None:
            self.state.pending.cancel()
            self.state.pending = None

    def _read_values(self) -> tuple:
        return tuple(source.read() for source in self._sources)

    def _build(self, values: tuple) -> Method:
        if isinstance(self._factory, Method):
            return self._factory
        method = self._factory(*values)
        if not isinstance(method, Method):
            raise TypeError(f"Watch factory returned {type(method).__name__}, not a Method")
        return method

    def _track(self, future: asyncio.Future[Any]) -> None:
        self.state.tasks.add(future)
        future.add_done_callback(self._settled)

    def _settled(self, future: asyncio.Future[Any]) -> None:
        self.state.tasks.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            get_output().warning(f"Watcher dispatch failed: {exc}")


class WatchController:
    """Creates watcher registrations for one context.

    Args:
        coordinator: Used by the default dispatch, which sends the built
            descriptor through :meth:`RequestCoordinator.send`.

    Example::

        page = Ref(1)
        handle = api.watcher.watch([page], lambda p: api.get("/todos", params={"page": p}),
                                   WatchPolicy(debounce=0.3))
        page.value = 2   # request for page 2 is sent 0.3s later
        handle.stop()
    """

    def __init__(self, coordinator: Optional[RequestCoordinator] = None) -> None:
        self._coordinator = coordinator
        self._handles: list[WatchHandle] = []

    @property
    def handles(self) -> list[WatchHandle]:
        """Registrations that have not been stopped."""
        self._handles = [h for h in self._handles if h.status != WatcherStatus.STOPPED]
        return list(self._handles)

    def watch(
        self,
        sources: Sequence[Observable],
        factory: Factory,
        policy: Optional[WatchPolicy] = None,
        dispatch: Optional[Dispatch] = None,
    ) -> WatchHandle:
        """Register a watcher.

        Raises:
            ConfigurationError: When *sources* is empty or contains something
                that is not observable, or when no dispatch is available.
        """
        if not sources:
            raise ConfigurationError("A watcher needs at least one source")
        for source in sources:
            if not isinstance(source, Observable):
                raise ConfigurationError(f"Not an observable watch source: {source!r}")
        if not isinstance(factory, Method) and not callable(factory):
            raise ConfigurationError("Watch factory must be a Method or a callable returning one")
        if dispatch is None:
            dispatch = self._default_dispatch()

        policy = policy or WatchPolicy()
        handle = WatchHandle(sources, factory, policy, dispatch)
        self._handles.append(handle)
        if policy.immediate:
            handle.fire()
        return handle

    def stop_all(self) -> None:
        for handle in self._handles:
            handle.stop()
        self._handles = []

    def _default_dispatch(self) -> Dispatch:
        coordinator = self._coordinator
        if coordinator is None:
            raise ConfigurationError("No dispatch given and no coordinator to send through")

        def dispatch(method: Method, force: bool, values: tuple) -> Any:
            return coordinator.send(method, force_request=force)

        return dispatch
