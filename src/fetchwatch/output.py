"""Diagnostics channel for fetchwatch.

fetchwatch never writes to stdout; everything it reports (cache hits,
shared requests, aborted firings, callback failures) goes to stderr
through an :class:`OutputManager`:

* **Rich formatting** on stderr unless colour is disabled.
* **Colour control** -- respects ``NO_COLOR`` and ``TERM=dumb``.
* **Verbosity** -- ``debug`` lines only appear when verbose mode is on,
  either through the constructor or the ``FETCHWATCH_VERBOSE`` environment
  variable. Quiet mode silences warnings as well.

Library code calls :func:`get_output` instead of passing the manager around. Applications install their own
manager with :func:`set_output`; tests reset it with :func:`reset_output`.
"""

from __future__ import annotations

import os
import sys
from typing import Optional, TextIO

from rich.console import Console
from rich.markup import escape


class OutputManager:
    """Routes diagnostics to stderr with optional Rich markup.

    Args:
        no_color: Disable all colour and Rich markup.
        quiet: Suppress all diagnostics, warnings included.
        verbose: Enable debug-level messages.
        file: Stream to write to. Defaults to ``sys.stderr`` at call time.
    """

    def __init__(
        self,
        no_color: bool = False,
        quiet: bool = False,
        verbose: Optional[bool] = None,
        file: Optional[TextIO] = None,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = _env_verbose() if verbose is None else verbose
        self._file = file
        self._console = Console(
            file=file or sys.stderr,
            no_color=self._no_color,
            stderr=file is None,
            highlight=False,
        )

    @property
    def is_quiet(self) -> bool:
        """Whether quiet mode is enabled."""
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        """Whether verbose mode is enabled."""
        return self._verbose

    def warning(self, message: str) -> None:
        """Print a yellow warning. Suppressed by ``quiet``."""
        if not self._quiet:
            self._emit(f"Warning: {message}", f"[yellow]Warning:[/yellow] {escape(message)}")

    def debug(self, message: str) -> None:
        """Print a debug message, prefixed with ``[debug]``. Verbose mode only."""
        if self._verbose and not self._quiet:
            self._emit(f"[debug] {message}", f"[dim]\\[debug] {escape(message)}[/dim]")

    def _emit(self, plain: str, markup: str) -> None:
        if self._no_color:
            print(plain, file=self._file or sys.stderr, flush=True)
        else:
            self._console.print(markup)


# ------------------------------------------------------------------ #
# Module-level helpers
# ------------------------------------------------------------------ #


def _env_verbose() -> bool:
    """Return True when ``FETCHWATCH_VERBOSE`` is set to a truthy value."""
    return os.environ.get("FETCHWATCH_VERBOSE", "").lower() in ("1", "true", "yes", "on")


def _should_disable_color() -> bool:
    """Return True when NO_COLOR is set (any value) or TERM=dumb."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    if os.environ.get("TERM") == "dumb":
        return True
    return False


_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the global :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    """Install *output* as the global :class:`OutputManager` instance."""
    global _output
    _output = output


def reset_output() -> None:
    """Reset the global :class:`OutputManager` to ``None``.

    Primarily useful in test suites to ensure a clean state between tests.
    """
    global _output
    _output = None

