"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for taskcred:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.taskcred/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **User config** -- an optional ``config.json`` in the config directory,
  deserialised into :class:`~taskcred.models.Settings`.
* **Project config** -- an optional ``./taskcred.json`` in the working
  directory.
* **Precedence resolution** -- :func:`resolve_settings` merges explicit
  overrides, environment variables, project config, and user config into the
  final effective :class:`~taskcred.models.Settings`.
* **Credential search paths** -- :func:`credential_search_paths` expands the
  configured token file names into the ordered list probed by discovery.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from taskcred.exceptions import ConfigError
from taskcred.models import Settings

_APP_NAME = "taskcred"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "taskcred.json"

# Environment variable -> settings field. Earlier names win.
_ENV_SETTINGS: list[tuple[str, str]] = [
    ("TASKCRED_API_KEY", "api_key"),
    ("RTM_API_KEY", "api_key"),
    ("TASKCRED_SHARED_SECRET", "shared_secret"),
    ("RTM_SHARED_SECRET", "shared_secret"),
    ("TASKCRED_BASE_URL", "base_url"),
    ("TASKCRED_PERMISSION", "permission"),
]


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform uses the XDG Base Directory layout (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir(app_name: str = _APP_NAME) -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/<app>/`` (default ``~/.config/<app>/``).
    On macOS/Windows: ``~/.<app>/``.

    The directory is created with owner-only permissions because it also
    holds the file-backed credential store.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).

    Raises:
        ConfigError: If the directory cannot be created.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / app_name
    else:
        path = Path.home() / f".{app_name}"
    try:
        path.mkdir(mode=0o700, parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigError(f"Cannot create config directory {path}: {exc}") from exc
    return path


def get_data_dir() -> Path:
    """Return the directory crash logs are written to, creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/taskcred/`` (default ``~/.local/share/taskcred/``).
    On macOS/Windows: ``~/.taskcred/logs/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def credential_search_paths(
    settings: Settings,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> list[Path]:
    """Return the ordered token file locations probed by discovery.

    Order: working-directory names, then home-directory variants, then
    ``~/.config/<app_name>/<token_filename>``. Duplicates are dropped while
    keeping the first occurrence.

    Args:
        settings: Effective settings supplying the file name lists.
        cwd: Working directory override (defaults to :func:`Path.cwd`).
        home: Home directory override (defaults to :func:`Path.home`).
    """
    cwd = cwd or Path.cwd()
    home = home or Path.home()

    candidates: list[Path] = [cwd / name for name in settings.cwd_token_files]
    candidates += [home / name for name in settings.home_token_files]
    candidates.append(home / ".config" / settings.app_name / settings.token_filename)

    seen: set[Path] = set()
    ordered: list[Path] = []
    for path in candidates:
        if path not in seen:
            seen.add(path)
            ordered.append(path)
    return ordered


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given it is applied to the temp file before any content
    is written, so the secret is never readable with wider permissions.
    On any failure the temp file is cleaned up.
    """
    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Config files ---


def _read_json_config(path: Path, label: str) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Invalid {label} config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {label} config at {path}: expected a JSON object")
    return data


def load_user_config() -> dict[str, Any]:
    """Load ``config.json`` from the user config directory.

    Returns:
        The parsed JSON object, or an empty dict if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a valid JSON object.
    """
    return _read_json_config(get_config_dir() / _CONFIG_FILENAME, "user")


def load_project_config() -> dict[str, Any]:
    """Load project-local configuration from ``./taskcred.json``.

    Returns:
        The parsed JSON object, or an empty dict if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a valid JSON object.
    """
    return _read_json_config(Path.cwd() / _PROJECT_CONFIG_FILENAME, "project")


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for env_var, field in _ENV_SETTINGS:
        value = os.environ.get(env_var)
        if value and field not in overrides:
            overrides[field] = value
    if os.environ.get("TASKCRED_NO_KEYRING"):
        overrides["use_keyring"] = False
    return overrides


# --- Precedence resolution ---


def resolve_settings(**cli_overrides: Any) -> Settings:
    """Resolve settings with the full precedence chain.

    Precedence (high to low):
        1. Explicit keyword overrides (CLI flags). ``None`` values are ignored.
        2. Environment variables (``TASKCRED_API_KEY`` / ``RTM_API_KEY``,
           ``TASKCRED_SHARED_SECRET`` / ``RTM_SHARED_SECRET``,
           ``TASKCRED_BASE_URL``, ``TASKCRED_PERMISSION``,
           ``TASKCRED_NO_KEYRING``)
        3. Project config (``./taskcred.json``)
        4. User config (``~/.config/taskcred/config.json``)
        5. Defaults

    Returns:
        The validated :class:`~taskcred.models.Settings`.

    Raises:
        ConfigError: If a config file is malformed or the merged values fail
            validation.
    """
    merged: dict[str, Any] = {}
    merged.update(load_user_config())
    merged.update(load_project_config())
    merged.update(_env_overrides())
    merged.update({k: v for k, v in cli_overrides.items() if v is not None})

    try:
        return Settings.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
