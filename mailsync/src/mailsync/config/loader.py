"""Strict loader for the MailSync runtime configuration.

What:
  Locate, parse, and validate ``mailsync.yaml`` into a
  :class:`~mailsync.config.schema.RuntimeConfig` and cache the result for the
  process.

Why:
  Timeouts and keep-alive intervals are read on every connect and every watch
  cycle. Centralising discovery and validation means the engine never runs
  with partially initialised settings, while embedding applications can still
  rely on sane defaults without shipping a file.

How:
  Resolve candidate file locations based on explicit parameters, the
  ``MAILSYNC_CONFIG_PATH`` environment variable, and default locations. Parse
  YAML payloads with ``yaml.safe_load`` and validate them with Pydantic.

Interfaces:
  :func:`load_runtime_config`, :func:`get_runtime_config`,
  :func:`reset_runtime_config`, :class:`ConfigLoadError`,
  :class:`RuntimeConfigError`.

Invariants:
  - An explicitly requested file (argument or environment variable) must exist;
    only the implicit default locations may be absent.
  - The cache respects explicit reload requests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

import yaml
from pydantic import ValidationError as _PydanticValidationError

from .schema import RuntimeConfig, ValidationError


ENV_VAR = "MAILSYNC_CONFIG_PATH"

DEFAULT_CONFIG_PATHS = (
    Path("mailsync.yaml"),
    Path("/etc/mailsync/config.yaml"),
)

_RUNTIME_CONFIG: Optional[RuntimeConfig] = None


class ConfigLoadError(Exception):
    """Base error for configuration parsing or validation failures."""


class RuntimeConfigError(ConfigLoadError):
    """Error raised when ``mailsync.yaml`` cannot be loaded or validated.

    The message always names the offending path so operators can fix the
    right file.
    """


def _candidate_paths(path: Optional[Path]) -> Iterable[Tuple[Path, bool]]:
    """Yield ``(path, required)`` pairs in precedence order.

    What:
      Produce the explicit path, the environment override, and the default
      locations, flagging which of them must exist.

    Why:
      A typo in an explicitly configured path should fail loudly instead of
      silently falling back to defaults.

    How:
      The explicit argument short-circuits everything else; otherwise the
      environment variable wins over the default locations.
    """

    if path is not None:
        yield Path(path), True
        return
    env_value = os.environ.get(ENV_VAR)
    if env_value:
        yield Path(env_value), True
        return
    for candidate in DEFAULT_CONFIG_PATHS:
        yield candidate, False


def _parse_config_payload(text: str, source: Path) -> dict[str, Any]:
    """Parse YAML text into a mapping, converting parser errors."""

    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise RuntimeConfigError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise RuntimeConfigError(f"{source} must contain a mapping at the top-level")
    return payload


def _load_runtime_from_path(path: Path) -> RuntimeConfig:
    """Load and validate the configuration stored at ``path``.

    Raises:
      RuntimeConfigError: If the file cannot be read or fails validation.
    """

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise RuntimeConfigError(f"Configuration file missing: {path}") from exc
    except OSError as exc:
        raise RuntimeConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    payload = _parse_config_payload(text, path)
    try:
        return RuntimeConfig.model_validate(payload)
    except (_PydanticValidationError, ValidationError) as exc:
        raise RuntimeConfigError(f"Invalid configuration in {path}: {exc}") from exc


def load_runtime_config(path: Optional[Path] = None, *, reload: bool = False) -> RuntimeConfig:
    """Return the runtime configuration, loading it on first use.

    What:
      Locate ``mailsync.yaml`` using the precedence chain, parse it, and cache
      the validated model.

    Why:
      Workers call into the configuration frequently; caching avoids re-reading
      the file on every connect.

    How:
      Return the cached model unless ``path`` or ``reload`` requests a fresh
      load; walk :func:`_candidate_paths`, skipping absent optional defaults,
      and fall back to ``RuntimeConfig()`` when nothing is found.

    Args:
      path: Optional explicit location of the configuration file.
      reload: Force re-reading even when a cached value exists.

    Returns:
      The validated :class:`RuntimeConfig`.

    Raises:
      RuntimeConfigError: When a required file is missing or invalid.
    """

    global _RUNTIME_CONFIG
    if _RUNTIME_CONFIG is not None and path is None and not reload:
        return _RUNTIME_CONFIG
    config: Optional[RuntimeConfig] = None
    for candidate, required in _candidate_paths(path):
        if not required and not candidate.exists():
            continue
        config = _load_runtime_from_path(candidate)
        break
    if config is None:
        config = RuntimeConfig()
    _RUNTIME_CONFIG = config
    return config


def get_runtime_config() -> RuntimeConfig:
    """Return the cached runtime configuration, loading it when needed."""

    return load_runtime_config()


def reset_runtime_config() -> None:
    """Forget the cached configuration so the next access reloads it."""

    global _RUNTIME_CONFIG
    _RUNTIME_CONFIG = None
