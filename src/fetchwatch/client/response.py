"""Response payload helpers.

Shared requests hand one settled value to every waiter.  That is safe for
ordinary values but not for one-shot readable streams: the first consumer
would drain the stream for everybody.  Streams are therefore read once into
a :class:`BufferedBody`, and each waiter (and each cache hit) receives its
own fresh stream from :func:`share_payload`.

:func:`extract_response_data` is a ready-made ``responded`` hook for
:class:`httpx.Response` values.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, Union

import httpx


@dataclass(frozen=True)
class BufferedBody:
    """The fully-read content of a one-shot stream."""

    content: Union[bytes, str]

    def open(self) -> Union[io.BytesIO, io.StringIO]:
        """Return a new independent stream over the buffered content."""
        if isinstance(self.content, str):
            return io.StringIO(self.content)
        return io.BytesIO(self.content)


def is_stream(value: Any) -> bool:
    """Whether *value* is a one-shot readable stream."""
    return isinstance(value, io.IOBase) and value.readable()


def buffer_payload(value: Any) -> Any:
    """Read a stream *value* into a :class:`BufferedBody`; return other values unchanged."""
    if is_stream(value):
        return BufferedBody(value.read())
    return value


def share_payload(value: Any) -> Any:
    """Return what a single consumer should receive for a settled *value*."""
    if isinstance(value, BufferedBody):
        return value.open()
    return value


def extract_response_data(response: httpx.Response) -> Any:
    """Extract the body from an HTTP response.

    Attempts to parse the body as JSON first.  If that fails (e.g. the
    response is HTML or plain text), returns the raw text.  Returns
    ``None`` for responses with no content.

    Example::

        api = Fetchwatch(base_url="https://api.example.com", responded=extract_response_data)
    """
    if not response.content:
        return None

    try:
        return response.json()
    except ValueError:
        pass

    return response.text
