"""Configuration resolution and XDG cache paths.

* **Directory layout** -- the on-disk response store lives in an XDG
  compliant cache directory on Linux/BSD and under ``~/.fetchwatch/cache``
  on macOS and Windows. See :func:`get_cache_dir`.
* **Project config** -- an optional ``./fetchwatch.json`` with
  :class:`~fetchwatch.models.ContextOptions` fields.
* **Precedence resolution** -- :func:`resolve_options` merges explicit
  overrides, environment variables and project config into the options a
  :class:`~fetchwatch.context.Fetchwatch` context is built from.
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from fetchwatch.exceptions import ConfigurationError
from fetchwatch.models import ContextOptions

_APP_NAME = "fetchwatch"
_PROJECT_CONFIG_FILENAME = "fetchwatch.json"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def get_cache_dir() -> Path:
    """Return the cache directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CACHE_HOME/fetchwatch/`` (default ``~/.cache/fetchwatch/``).
    On macOS/Windows: ``~/.fetchwatch/cache/``.

    Returns:
        Absolute path to the cache directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        env_value = os.environ.get("XDG_CACHE_HOME", "")
        base = Path(env_value) if env_value else Path.home() / ".cache"
        path = base / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}" / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Project-local config ---


def load_project_config(directory: Optional[Path] = None) -> Optional[dict[str, Any]]:
    """Load project-local options from ``fetchwatch.json``.

    Args:
        directory: Directory to look in. Defaults to the working directory.

    Returns:
        The parsed JSON object, or ``None`` if the file does not exist.

    Raises:
        ConfigurationError: If the file is not valid JSON or not an object.
    """
    path = (directory or Path.cwd()) / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid project config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid project config at {path}: expected an object")
    return data


# --- Precedence resolution ---


def _env_overrides() -> dict[str, Any]:
    """Collect options from ``FETCHWATCH_*`` environment variables."""
    values: dict[str, Any] = {}

    base_url = os.environ.get("FETCHWATCH_BASE_URL")
    if base_url:
        values["base_url"] = base_url

    timeout = os.environ.get("FETCHWATCH_TIMEOUT")
    if timeout:
        try:
            values["timeout"] = float(timeout)
        except ValueError as exc:
            raise ConfigurationError(f"FETCHWATCH_TIMEOUT must be a number, got {timeout!r}") from exc

    share = os.environ.get("FETCHWATCH_SHARE_REQUEST")
    if share:
        lowered = share.lower()
        if lowered in _TRUE_VALUES:
            values["share_request"] = True
        elif lowered in _FALSE_VALUES:
            values["share_request"] = False
        else:
            raise ConfigurationError(
                f"FETCHWATCH_SHARE_REQUEST must be a boolean, got {share!r}"
            )

    return values


def build_options(data: dict[str, Any]) -> ContextOptions:
    """Validate *data* into :class:`ContextOptions`, raising :class:`ConfigurationError`."""
    try:
        return ContextOptions.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid context options: {exc}") from exc


def merge_options(options: Optional[ContextOptions] = None, **overrides: Any) -> ContextOptions:
    """Layer keyword *overrides* over an explicit *options* object (or defaults).

    Only fields that were explicitly set on *options* are carried over, so
    defaults are re-applied by validation.
    """
    merged: dict[str, Any] = {}
    if options is not None:
        merged.update({name: getattr(options, name) for name in options.model_fields_set})
    merged.update(overrides)
    return build_options(merged)


def resolve_options(
    *,
    project_dir: Optional[Path] = None,
    use_environment: bool = True,
    **overrides: Any,
) -> ContextOptions:
    """Resolve context options with the full precedence chain.

    Precedence (high to low):
        1. Keyword ``overrides``
        2. Environment variables (``FETCHWATCH_BASE_URL``,
           ``FETCHWATCH_TIMEOUT``, ``FETCHWATCH_SHARE_REQUEST``)
        3. Project config (``./fetchwatch.json``)
        4. Defaults

    Returns:
        Validated :class:`ContextOptions`.

    Raises:
        ConfigurationError: If any layer holds an invalid value.
    """
    merged: dict[str, Any] = {}
    project = load_project_config(project_dir)
    if project is not None:
        merged.update(project)
    if use_environment:
        merged.update(_env_overrides())
    merged.update(overrides)
    return build_options(merged)
