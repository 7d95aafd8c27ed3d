"""Tests for the diagnostics output manager.

Covers:
- NO_COLOR / TERM=dumb color disabling
- Quiet mode silences everything
- Verbose mode debug output (flag and FETCHWATCH_VERBOSE)
- Global instance management
"""

from __future__ import annotations

from io import StringIO

import pytest

from fetchwatch.output import (
    OutputManager,
    _should_disable_color,
    get_output,
    reset_output,
    set_output,
)


@pytest.fixture(autouse=True)
def _reset_global_output():
    """Ensure the global output instance is reset between tests."""
    reset_output()
    yield
    reset_output()


def _plain(**kwargs) -> tuple[OutputManager, StringIO]:
    buffer = StringIO()
    return OutputManager(no_color=True, file=buffer, **kwargs), buffer


class TestColorDisabling:
    def test_no_color_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NO_COLOR", "")
        assert _should_disable_color() is True

    def test_term_dumb(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _should_disable_color() is True

    def test_color_allowed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        assert _should_disable_color() is False


class TestLevels:
    def test_warning(self) -> None:
        out, buffer = _plain()
        out.warning("careful")
        assert buffer.getvalue() == "Warning: careful\n"

    def test_quiet_suppresses_warnings(self) -> None:
        out, buffer = _plain(quiet=True)
        out.warning("careful")
        assert buffer.getvalue() == ""
        assert out.is_quiet

    def test_quiet_overrides_verbose(self) -> None:
        out, buffer = _plain(quiet=True, verbose=True)
        out.debug("detail")
        assert buffer.getvalue() == ""

    def test_debug_needs_verbose(self) -> None:
        out, buffer = _plain(verbose=False)
        out.debug("detail")
        assert buffer.getvalue() == ""

    def test_debug_when_verbose(self) -> None:
        out, buffer = _plain(verbose=True)
        out.debug("detail")
        assert buffer.getvalue() == "[debug] detail\n"
        assert out.is_verbose

    def test_verbose_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FETCHWATCH_VERBOSE", "1")
        out, _ = _plain()
        assert out.is_verbose

    def test_rich_markup_is_escaped(self) -> None:
        buffer = StringIO()
        out = OutputManager(file=buffer, verbose=True)
        out._no_color = False
        out.warning("[bold]not markup[/bold]")
        assert "[bold]not markup[/bold]" in buffer.getvalue()


class TestGlobalInstance:
    def test_lazy_default(self) -> None:
        assert isinstance(get_output(), OutputManager)
        assert get_output() is get_output()

    def test_set_and_reset(self) -> None:
        custom = OutputManager(quiet=True)
        set_output(custom)
        assert get_output() is custom
        reset_output()
        assert get_output() is not custom

