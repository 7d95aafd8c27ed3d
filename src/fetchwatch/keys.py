"""Request fingerprints.

A fingerprint is the SHA-256 hex digest of ``VERB|URL|fields`` where
*fields* is the canonical JSON form of the request's params, headers and
body.  Canonicalisation sorts mapping keys recursively and keeps sequence
order, so two descriptors built from the same data in a different
insertion order share one fingerprint.  Top-level fields set to ``None``
are left out entirely.
"""

from __future__ import annotations

import enum
import hashlib
import json
from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from pydantic import BaseModel

if TYPE_CHECKING:
    from fetchwatch.method import Method


def build_url(base_url: str, url: str) -> str:
    """Join *base_url* and *url* with exactly one ``/`` between them.

    Absolute URLs (with a scheme) are returned unchanged.

    Example::

        build_url("https://api.example.com/", "/users")
        # 'https://api.example.com/users'
    """
    if urlsplit(url).scheme or not base_url:
        return url
    if not url:
        return base_url
    return f"{base_url.rstrip('/')}/{url.lstrip('/')}"


def canonicalize(value: Any) -> Any:
    """Return a JSON-compatible, order-normalised copy of *value*.

    Mappings get string keys (sorting happens at serialisation time),
    lists and tuples keep their order, sets are sorted by their canonical
    JSON form, bytes become ``"bytes:<hex>"`` and dates use ISO format.
    """
    if isinstance(value, BaseModel):
        return canonicalize(value.model_dump())
    if isinstance(value, dict):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        items = [canonicalize(v) for v in value]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True))
    if isinstance(value, (bytes, bytearray)):
        return f"bytes:{bytes(value).hex()}"
    if isinstance(value, enum.Enum):
        return canonicalize(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return repr(value)


def serialize(value: Any) -> str:
    """Serialise *value* canonically (sorted keys, compact separators)."""
    return json.dumps(
        canonicalize(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def fingerprint(
    verb: str,
    url: str,
    params: Any = None,
    headers: Any = None,
    data: Any = None,
) -> str:
    """Compute the fingerprint for raw request components."""
    fields = {
        name: value
        for name, value in (("params", params), ("headers", headers), ("data", data))
        if value is not None
    }
    raw = "|".join([verb.upper(), url, serialize(fields)])
    return hashlib.sha256(raw.encode()).hexdigest()


def derive_key(method: Method) -> str:
    """Return the fingerprint of *method*.

    Pure: the result depends only on the descriptor's verb, normalised URL,
    params, headers and body.
    """
    return fingerprint(
        method.verb,
        build_url(method.base_url, method.url),
        method.config.params,
        method.config.headers,
        method.data,
    )
