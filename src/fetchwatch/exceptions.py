"""Exception hierarchy for fetchwatch.

All exceptions inherit from :class:`FetchwatchError`, which optionally
carries the :class:`~fetchwatch.method.Method` whose request produced it.
Every failure on the request path (transport errors, timeouts, aborts and
response-transform failures) reaches consumers as one of these types, with
the underlying exception chained as ``__cause__``.

Subclass hierarchy::

    FetchwatchError
    +-- ConfigurationError
    +-- TransportError
    |   +-- TimeoutError_
    +-- AbortError
    +-- ResponseTransformError
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from fetchwatch.method import Method


class FetchwatchError(Exception):
    """Base exception for all fetchwatch errors.

    Args:
        message: Human-readable error description.
        method: The request descriptor the error belongs to, when known.
    """

    def __init__(self, message: str, method: Optional[Method] = None) -> None:
        super().__init__(message)
        self.message = message
        self.method = method

    def with_method(self, method: Any) -> FetchwatchError:
        """Attach *method* if no descriptor was recorded yet and return ``self``."""
        if self.method is None:
            self.method = method
        return self


class ConfigurationError(FetchwatchError):
    """Raised synchronously for invalid configuration (e.g. watching no sources)."""


class TransportError(FetchwatchError):
    """Raised when the transport fails to deliver a response (DNS, refused, reset)."""


class TimeoutError_(TransportError):
    """Raised when a request exceeds its configured timeout.

    Named with a trailing underscore to avoid shadowing the built-in
    ``TimeoutError``.
    """


class AbortError(FetchwatchError):
    """Raised for every waiter of a request that was explicitly aborted."""


class ResponseTransformError(FetchwatchError):
    """Raised when a ``responded``, ``responded_error`` or ``transform_data`` hook fails."""
