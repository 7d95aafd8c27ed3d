"""Minimal reactive state containers.

Watchers and hooks only depend on the :class:`Observable` contract: a value
that can be read and subscribed to.  UI integrations supply their own
observables; :class:`Ref` and :class:`Computed` are enough for scripts and
tests.

Example::

    page = Ref(1)
    unsubscribe = page.subscribe(lambda value: print("page is", value))
    page.value = 2      # prints "page is 2"
    page.value = 2      # no change, no notification
    unsubscribe()
"""

from __future__ import annotations

from typing import Any, Callable, Generic, Protocol, TypeVar, runtime_checkable

from fetchwatch.output import get_output

T = TypeVar("T")

Subscriber = Callable[[Any], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class Observable(Protocol):
    """Anything a watcher can read and be notified about."""

    def read(self) -> Any:
        """Return the current value."""
        ...

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        """Call ``callback(new_value)`` on every change; return an unsubscribe function."""
        ...


class Ref(Generic[T]):
    """A mutable value that notifies subscribers when it changes.

    Assigning an equal value is not a change.  Use :meth:`trigger` to
    notify after mutating the value in place.
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._subscribers: list[Subscriber] = []

    @property
    def value(self) -> T:
        return self._value

    @value.setter
    def value(self, new_value: T) -> None:
        if new_value is self._value or _equal(new_value, self._value):
            return
        self._value = new_value
        self._notify()

    def read(self) -> T:
        return self._value

    def trigger(self) -> None:
        """Notify subscribers without changing the value."""
        self._notify()

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self._value)
            except Exception as exc:
                get_output().warning(f"State subscriber failed: {exc}")

    def __repr__(self) -> str:
        return f"Ref({self._value!r})"


class Computed(Ref[T]):
    """A read-only value derived from other observables.

    Args:
        fn: Called with the current values of *sources*, positionally.
        *sources: The observables the value depends on.

    Example::

        total = Computed(lambda page, size: page * size, page, size)
    """

    def __init__(self, fn: Callable[..., T], *sources: Observable) -> None:
        self._fn = fn
        self._sources = sources
        super().__init__(self._compute())
        self._unsubscribers = [source.subscribe(self._recompute) for source in sources]

    @property
    def value(self) -> T:
        return self._value

    def dispose(self) -> None:
        """Stop following the sources."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _compute(self) -> T:
        return self._fn(*(source.read() for source in self._sources))

    def _recompute(self, _value: Any) -> None:
        new_value = self._compute()
        if new_value is self._value or _equal(new_value, self._value):
            return
        self._value = new_value
        self._notify()

    def __repr__(self) -> str:
        return f"Computed({self._value!r})"


def _equal(left: Any, right: Any) -> bool:
    try:
        return bool(left == right)
    except Exception:
        # Values without a usable equality (e.g. arrays) always count as changed.
        return False
