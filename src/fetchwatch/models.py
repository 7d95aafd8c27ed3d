"""Canonical models shared across fetchwatch modules.

**Configuration models** (Pydantic, validated on construction):
    :class:`ContextOptions`, :class:`MethodConfig`, :class:`LocalCacheConfig`.

**Runtime records** (plain dataclasses, mutated freely during a request):
    :class:`RequestElements` and :class:`DownloadProgress`.

Configuration models that accept adapter-specific settings use
``extra="allow"`` so that unknown keys are preserved in ``model_extra`` and
forwarded to the transport.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Verb(str, enum.Enum):
    """Request verbs supported by the descriptor factories."""

    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"


class CacheMode(str, enum.Enum):
    """How a cached value is treated by readers.

    ``NORMAL`` entries are authoritative: a live hit short-circuits the
    transport.  ``PLACEHOLDER`` entries are shown to readers while a fresh
    value is fetched in the background.
    """

    NORMAL = "normal"
    PLACEHOLDER = "placeholder"


class LocalCacheConfig(BaseModel):
    """Structured ``local_cache`` setting.

    ``expire`` is either a duration in seconds (``math.inf`` for a
    permanent entry) or an absolute :class:`~datetime.datetime` instant.
    """

    expire: Union[float, datetime, None] = None
    mode: CacheMode = CacheMode.NORMAL


class MethodConfig(BaseModel):
    """Per-request configuration attached to a :class:`~fetchwatch.method.Method`.

    Fields left as ``None`` fall back to the owning context's
    :class:`ContextOptions`.  Extra keys are kept in ``model_extra`` and
    handed to the transport adapter untouched.
    """

    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True)

    params: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[float] = Field(
        default=None, description="Request timeout in seconds"
    )
    share_request: Optional[bool] = None
    local_cache: Any = Field(
        default=None,
        description="Seconds, False, math.inf, or LocalCacheConfig / {expire, mode}",
    )
    transform_data: Optional[Callable[..., Any]] = None
    name: Optional[Union[str, int]] = None


class ContextOptions(BaseModel):
    """Options for a :class:`~fetchwatch.context.Fetchwatch` context.

    Example::

        ContextOptions(
            base_url="https://api.example.com",
            timeout=10,
            local_cache={"GET": 60},
            responded=lambda response: response.json(),
        )
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: Optional[str] = Field(
        default=None, description="Namespace for cache entries; generated when omitted"
    )
    base_url: str = Field(default="", description="Prefix for relative request URLs")
    timeout: Optional[float] = Field(
        default=None, description="Default request timeout in seconds"
    )
    share_request: bool = Field(
        default=True, description="Collapse concurrent identical requests into one call"
    )
    local_cache: dict[str, Any] = Field(
        default_factory=lambda: {Verb.GET.value: 300},
        description="Default cache setting per verb (GET caches for five minutes)",
    )
    before_request: Optional[Callable[..., Any]] = None
    responded: Optional[Callable[..., Any]] = None
    responded_error: Optional[Callable[..., Any]] = None

    @field_validator("timeout")
    @classmethod
    def _check_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value < 0:
            raise ValueError("timeout must not be negative")
        return value

    @field_validator("local_cache")
    @classmethod
    def _upper_verbs(cls, value: dict[str, Any]) -> dict[str, Any]:
        return {str(verb).upper(): setting for verb, setting in value.items()}


@dataclass
class RequestElements:
    """Everything a transport adapter needs to perform one request."""

    url: str
    verb: str
    headers: dict[str, Any] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    data: Any = None
    timeout: Optional[float] = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class DownloadProgress:
    """Byte counters reported while a response body is downloaded."""

    total: int = 0
    loaded: int = 0
