"""Request descriptors.

A :class:`Method` describes one request before it is executed: verb, URL,
body and a :class:`~fetchwatch.models.MethodConfig`.  Descriptors are
created through the verb factories of a
:class:`~fetchwatch.context.Fetchwatch` context, which also fills in the
context-wide defaults (timeout, request sharing, per-verb cache setting).

Descriptors are immutable after construction apart from
:meth:`Method.set_name`.  Two descriptors describing the same request share
a fingerprint (:attr:`Method.key`) and therefore a cache entry.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Optional, Union

from pydantic import ValidationError

from fetchwatch.exceptions import ConfigurationError
from fetchwatch.keys import build_url, derive_key
from fetchwatch.models import MethodConfig

if TYPE_CHECKING:
    from fetchwatch.context import Fetchwatch


class Method:
    """Description of a single request.

    Args:
        verb: Upper-case request verb (``"GET"``, ``"POST"``, ...).
        context: The owning :class:`~fetchwatch.context.Fetchwatch` context.
        url: Request path, joined to the context's ``base_url``, or an
            absolute URL.
        config: Per-request settings. See :class:`~fetchwatch.models.MethodConfig`.
            ``hit_source`` may additionally be given: a name, a key, a compiled
            pattern, a ``Method``, or a list of these.
        data: Request body.

    Example::

        todos = api.get("/todos", params={"page": 1}, name="todo-list")
        api.post("/todos", {"title": "x"}, hit_source="todo-list")
    """

    def __init__(
        self,
        verb: str,
        context: Fetchwatch,
        url: str,
        config: Optional[dict[str, Any]] = None,
        data: Any = None,
    ) -> None:
        options = context.options
        self.verb = verb.upper()
        self.context = context
        self.base_url = options.base_url or ""
        self.url = url
        self.data = data

        raw = dict(config or {})
        self.hit_source = _normalize_hit_source(raw.pop("hit_source", None))

        # Context-wide defaults apply only where the request does not set them.
        if options.timeout is not None:
            raw.setdefault("timeout", options.timeout)
        raw.setdefault("share_request", options.share_request)
        if raw.get("local_cache") is None and self.verb in options.local_cache:
            raw["local_cache"] = options.local_cache[self.verb]

        try:
            self.config = MethodConfig.model_validate(raw)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid config for {self.verb} {url}: {exc}") from exc

        self._key: Optional[str] = None

    @property
    def key(self) -> str:
        """Fingerprint used for caching and request sharing."""
        if self._key is None:
            self._key = derive_key(self)
        return self._key

    @property
    def name(self) -> Optional[Union[str, int]]:
        """Lookup name used by ``hit_source`` relations, if any."""
        return self.config.name

    @property
    def full_url(self) -> str:
        """The request URL joined to the context's base URL."""
        return build_url(self.base_url, self.url)

    def set_name(self, name: Union[str, int]) -> None:
        """Set the lookup name, replacing any existing one."""
        self.config.name = name

    async def send(self, force_request: bool = False) -> Any:
        """Send the request through the owning context's coordinator.

        Args:
            force_request: Skip the cache lookup and always hit the transport.

        Returns:
            The transformed response value.
        """
        return await self.context.coordinator.send(self, force_request)

    def abort(self) -> None:
        """Abort the in-flight request for this descriptor's fingerprint, if any."""
        self.context.coordinator.abort(self)

    def __repr__(self) -> str:
        return f"<Method {self.verb} {self.full_url}>"


def _normalize_hit_source(value: Any) -> Optional[list[Union[str, re.Pattern[str]]]]:
    """Turn a ``hit_source`` config value into a list of names/keys/patterns."""
    if value is None:
        return None
    items = value if isinstance(value, (list, tuple)) else [value]
    normalized: list[Union[str, re.Pattern[str]]] = []
    for item in items:
        if isinstance(item, Method):
            normalized.append(item.key)
        elif isinstance(item, (str, re.Pattern)):
            normalized.append(item)
        elif isinstance(item, int):
            normalized.append(str(item))
        else:
            raise ConfigurationError(
                f"hit_source entries must be names, patterns or methods, got {type(item).__name__}"
            )
    return normalized
