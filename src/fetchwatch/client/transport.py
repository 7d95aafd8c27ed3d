"""Transport adapters.

The coordinator never performs I/O itself.  It hands
:class:`~fetchwatch.models.RequestElements` to a :class:`TransportAdapter`
and gets back a :class:`TransportCall`: a started request that can be
awaited, observed for download progress and aborted.

:class:`HttpxTransport` is the default adapter, built on
:class:`httpx.AsyncClient`.  It enforces the request timeout itself so that
a timeout is reported as :class:`~fetchwatch.exceptions.TimeoutError_`
and an explicit abort as :class:`~fetchwatch.exceptions.AbortError`.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Protocol

import httpx

from fetchwatch.exceptions import AbortError, FetchwatchError, TimeoutError_, TransportError
from fetchwatch.models import RequestElements
from fetchwatch.output import get_output

if TYPE_CHECKING:
    from fetchwatch.method import Method

DownloadCallback = Callable[[int, int], None]

# Extra per-request settings passed straight to httpx.AsyncClient.build_request.
_HTTPX_PASSTHROUGH = ("files", "extensions")
_DECODED_HEADERS = ("content-encoding", "content-length", "transfer-encoding")


class TransportCall(Protocol):
    """A started request."""

    async def response(self) -> Any:
        """Wait for the raw response. Raises a ``FetchwatchError`` on failure."""
        ...

    async def headers(self) -> Mapping[str, str]:
        """Wait for the response headers (empty on failure)."""
        ...

    def on_download(self, callback: DownloadCallback) -> None:
        """Register ``callback(total, loaded)`` for body download progress."""
        ...

    def abort(self) -> None:
        """Cancel the underlying call; :meth:`response` then raises ``AbortError``."""
        ...


class TransportAdapter(Protocol):
    """Starts requests for the coordinator."""

    def execute(self, elements: RequestElements, method: Method) -> TransportCall: ...


class HttpxCall:
    """One request running on an :class:`httpx.AsyncClient`.

    The request starts as soon as the call is created.  A timer armed for
    ``elements.timeout`` seconds cancels it on expiry.
    """

    def __init__(self, client: httpx.AsyncClient, elements: RequestElements) -> None:
        self._client = client
        self._elements = elements
        self._listeners: list[DownloadCallback] = []
        self._timed_out = False
        self._aborted = False

        loop = asyncio.get_running_loop()
        self._task: asyncio.Task[httpx.Response] = loop.create_task(self._run())
        self._timer: Optional[asyncio.TimerHandle] = None
        if elements.timeout:
            self._timer = loop.call_later(elements.timeout, self._expire)

    async def response(self) -> httpx.Response:
        elements = self._elements
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._timed_out:
                raise TimeoutError_(
                    f"{elements.verb} {elements.url} timed out after {elements.timeout}s"
                ) from None
            if self._aborted:
                raise AbortError(f"{elements.verb} {elements.url} was aborted") from None
            raise
        except httpx.TimeoutException as exc:
            raise TimeoutError_(f"{elements.verb} {elements.url} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{elements.verb} {elements.url} failed: {exc}") from exc
        finally:
            self._cancel_timer()

    async def headers(self) -> Mapping[str, str]:
        try:
            response = await self.response()
        except FetchwatchError:
            return {}
        return response.headers

    def on_download(self, callback: DownloadCallback) -> None:
        self._listeners.append(callback)

    def abort(self) -> None:
        if self._task.done():
            return
        self._aborted = True
        self._cancel_timer()
        self._task.cancel()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _expire(self) -> None:
        if not self._task.done():
            self._timed_out = True
            self._task.cancel()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _build_request(self) -> httpx.Request:
        elements = self._elements
        kwargs: dict[str, Any] = {
            "method": elements.verb,
            "url": elements.url,
            "headers": {k: str(v) for k, v in elements.headers.items()},
            "params": elements.params,
        }
        data = elements.data
        if isinstance(data, (str, bytes)):
            kwargs["content"] = data
        elif data is not None:
            kwargs["json"] = data
        for name in _HTTPX_PASSTHROUGH:
            if name in elements.extra:
                kwargs[name] = elements.extra[name]
        return self._client.build_request(**kwargs)

    async def _run(self) -> httpx.Response:
        request = self._build_request()
        streamed = await self._client.send(request, stream=True)
        try:
            total = int(streamed.headers.get("content-length") or 0)
            body = bytearray()
            async for chunk in streamed.aiter_bytes():
                body.extend(chunk)
                if total > 0:
                    loaded = max(streamed.num_bytes_downloaded, len(body))
                    self._notify(total, min(loaded, total))
        finally:
            await streamed.aclose()

        # The body is already decoded, so encoding and length headers are
        # dropped and recomputed for the rebuilt response.
        headers = httpx.Headers(
            [(k, v) for k, v in streamed.headers.multi_items() if k.lower() not in _DECODED_HEADERS]
        )
        return httpx.Response(
            status_code=streamed.status_code,
            headers=headers,
            content=bytes(body),
            request=request,
            extensions=streamed.extensions,
        )

    def _notify(self, total: int, loaded: int) -> None:
        for callback in list(self._listeners):
            try:
                callback(total, loaded)
            except Exception as exc:
                get_output().warning(f"Download progress callback failed: {exc}")


class HttpxTransport:
    """Default :class:`TransportAdapter` on top of :class:`httpx.AsyncClient`.

    Args:
        client: An existing client to reuse (e.g. one configured with
            ``httpx.MockTransport`` in tests). When omitted, a client is
            created on first use and closed by :meth:`aclose`.
        **client_kwargs: Forwarded to :class:`httpx.AsyncClient` when the
            transport creates its own client.

    Example::

        transport = HttpxTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        api = Fetchwatch(base_url="https://api.example.com", transport=transport)
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, **client_kwargs: Any) -> None:
        self._client = client
        self._owns_client = client is None
        self._client_kwargs = client_kwargs

    def execute(self, elements: RequestElements, method: Method) -> HttpxCall:
        return HttpxCall(self._get_client(), elements)

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Timeouts are enforced per call by HttpxCall, not by httpx.
            kwargs = {"timeout": None, "follow_redirects": True, **self._client_kwargs}
            self._client = httpx.AsyncClient(**kwargs)
        return self._client
