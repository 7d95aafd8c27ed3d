"""Cache invalidation through ``hit_source`` relations.

A request may declare that its success makes other cached responses stale::

    api.post("/todos", {"title": "x"}, hit_source=["todo-list", re.compile(r"/todos")])

After such a request settles successfully, :class:`HitSourceInvalidator`
scans the descriptors whose responses are cached in the same context and
evicts every one that matches a relation:

* a string matches a descriptor's name exactly, or its fingerprint (a
  ``Method`` given as a relation is stored as its fingerprint);
* a compiled pattern matches when ``pattern.search`` finds the descriptor's
  URL or name.

Relations matching nothing are a no-op.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Union

from fetchwatch.output import get_output

if TYPE_CHECKING:
    from fetchwatch.cache import ResponseCache
    from fetchwatch.method import Method

Relation = Union[str, "re.Pattern[str]"]


def matches(relation: Relation, candidate: Method) -> bool:
    """Whether *relation* selects *candidate*."""
    name = candidate.name
    if isinstance(relation, re.Pattern):
        if relation.search(candidate.full_url) or relation.search(candidate.url):
            return True
        return name is not None and relation.search(str(name)) is not None
    if name is not None and str(name) == relation:
        return True
    return candidate.key == relation


class HitSourceInvalidator:
    """Evicts cache entries of descriptors named by ``hit_source`` relations.

    Args:
        context_id: Cache namespace this invalidator works in.
        cache: The shared :class:`~fetchwatch.cache.ResponseCache`.
    """

    def __init__(self, context_id: str, cache: ResponseCache) -> None:
        self._context_id = context_id
        self._cache = cache
        self._known: dict[str, Method] = {}

    def register(self, method: Method) -> None:
        """Remember *method* as the owner of its cached response.

        A nameless descriptor never replaces a named one for the same key.
        """
        current = self._known.get(method.key)
        if current is not None and current.name is not None and method.name is None:
            return
        self._known[method.key] = method

    def forget(self, key: str) -> None:
        """Drop the registration for *key*, if any."""
        self._known.pop(key, None)

    def known(self) -> list[Method]:
        """Descriptors currently registered, in registration order."""
        return list(self._known.values())

    def find(self, relation: Relation) -> list[Method]:
        """Registered descriptors selected by *relation*.

        Registrations whose cache entry expired or was removed are dropped.
        """
        found: list[Method] = []
        for method in list(self._known.values()):
            if self._cache.lookup(self._context_id, method.key) is None:
                self.forget(method.key)
            elif matches(relation, method):
                found.append(method)
        return found

    def on_settled(self, method: Method) -> list[str]:
        """Invalidate entries selected by *method*'s ``hit_source`` relations.

        Returns:
            The fingerprints that were invalidated.
        """
        if not method.hit_source:
            return []

        evicted: list[str] = []
        for relation in method.hit_source:
            candidates = self.find(relation)
            if not candidates and isinstance(relation, str) and relation != method.key:
                # Entries restored from storage have no registered descriptor yet.
                self._cache.invalidate(self._context_id, relation)
            for candidate in candidates:
                if candidate.key == method.key or candidate.key in evicted:
                    continue
                self._cache.invalidate(self._context_id, candidate.key)
                self.forget(candidate.key)
                evicted.append(candidate.key)

        if evicted:
            get_output().debug(
                f"hit_source of {method.verb} {method.url} invalidated {len(evicted)} entr"
                f"{'y' if len(evicted) == 1 else 'ies'}"
            )
        return evicted
