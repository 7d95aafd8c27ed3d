"""Shared test fixtures for fetchwatch.

Provides fake clocks, controllable transports, ``httpx.MockTransport``
backed contexts and isolated configuration environments.  These fixtures
are automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

import asyncio
import io
import json
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import pytest

from fetchwatch.client.transport import HttpxTransport
from fetchwatch.context import Fetchwatch
from fetchwatch.exceptions import AbortError
from fetchwatch.models import RequestElements
from fetchwatch.output import OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager keeps a reference to the stream it was created with;
    a fresh manager is created on next use.
    """
    yield
    reset_output()


@pytest.fixture
def debug_log() -> io.StringIO:
    """Install a verbose OutputManager writing to a buffer and return the buffer."""
    buffer = io.StringIO()
    set_output(OutputManager(no_color=True, verbose=True, file=buffer))
    yield buffer
    reset_output()


# ---------------------------------------------------------------------------
# Fake clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced POSIX clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Controllable transport
# ---------------------------------------------------------------------------


class ControlledCall:
    """A transport call settled by the test."""

    def __init__(self, elements: RequestElements) -> None:
        self.elements = elements
        self.aborted = False
        self.listeners: list[Callable[[int, int], None]] = []
        self._future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

    async def response(self) -> Any:
        return await self._future

    async def headers(self) -> dict[str, str]:
        return {}

    def on_download(self, callback: Callable[[int, int], None]) -> None:
        self.listeners.append(callback)

    def abort(self) -> None:
        self.aborted = True
        if not self._future.done():
            self._future.set_exception(AbortError("aborted"))

    def resolve(self, value: Any) -> None:
        self._future.set_result(value)

    def reject(self, error: BaseException) -> None:
        self._future.set_exception(error)

    def progress(self, total: int, loaded: int) -> None:
        for listener in list(self.listeners):
            listener(total, loaded)


class ControlledTransport:
    """Transport adapter whose calls stay pending until the test settles them.

    With ``auto`` set, every call resolves right away with ``auto(elements)``.
    """

    def __init__(self, auto: Optional[Callable[[RequestElements], Any]] = None) -> None:
        self.calls: list[ControlledCall] = []
        self._auto = auto

    def execute(self, elements: RequestElements, method: Any) -> ControlledCall:
        call = ControlledCall(elements)
        self.calls.append(call)
        if self._auto is not None:
            call.resolve(self._auto(elements))
        return call

    @property
    def last(self) -> ControlledCall:
        return self.calls[-1]


@pytest.fixture
def transport() -> ControlledTransport:
    return ControlledTransport()


@pytest.fixture
def echo_transport() -> ControlledTransport:
    """Resolves every call with ``{"url", "params", "data"}`` of the request."""
    return ControlledTransport(
        auto=lambda elements: {"url": elements.url, "params": elements.params, "data": elements.data}
    )


@pytest.fixture
def api(transport: ControlledTransport, clock: FakeClock) -> Fetchwatch:
    """A context on the controllable transport and the fake clock."""
    return Fetchwatch(base_url="https://api.example.com", transport=transport, clock=clock)


@pytest.fixture
def echo_api(echo_transport: ControlledTransport, clock: FakeClock) -> Fetchwatch:
    return Fetchwatch(base_url="https://api.example.com", transport=echo_transport, clock=clock)


# ---------------------------------------------------------------------------
# httpx.MockTransport helpers
# ---------------------------------------------------------------------------


def json_echo_handler(request: httpx.Request) -> httpx.Response:
    """Answer with the request's path, params and body as JSON."""
    body = json.loads(request.content) if request.content else None
    return httpx.Response(
        200,
        json={
            "method": request.method,
            "path": request.url.path,
            "params": dict(request.url.params),
            "body": body,
        },
    )


@pytest.fixture
def mock_http() -> Callable[..., HttpxTransport]:
    """Factory building an :class:`HttpxTransport` on ``httpx.MockTransport``."""

    def factory(handler: Callable[[httpx.Request], Any] = json_echo_handler) -> HttpxTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpxTransport(client=client)

    return factory


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CACHE_HOME to a subdirectory of tmp_path, clears all
    FETCHWATCH_* environment variables and changes the working directory
    to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    for var in [
        "FETCHWATCH_BASE_URL",
        "FETCHWATCH_TIMEOUT",
        "FETCHWATCH_SHARE_REQUEST",
        "FETCHWATCH_VERBOSE",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path
