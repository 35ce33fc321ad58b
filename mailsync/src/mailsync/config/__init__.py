"""MailSync configuration package.

What:
  Provide a cohesive import surface for runtime configuration loading and the
  pydantic schema describing it.

Interfaces:
  - get_runtime_config / load_runtime_config / reset_runtime_config: Resolve
    ``mailsync.yaml`` and expose a cached configuration object.
  - RuntimeConfig / ValidationError: Pydantic model and error type.
  - ConfigLoadError / RuntimeConfigError: Loader failures.
"""

from .loader import (
    ConfigLoadError,
    RuntimeConfigError,
    get_runtime_config,
    load_runtime_config,
    reset_runtime_config,
)
from .schema import RuntimeConfig, ValidationError

__all__ = [
    "ConfigLoadError",
    "RuntimeConfigError",
    "get_runtime_config",
    "load_runtime_config",
    "reset_runtime_config",
    "RuntimeConfig",
    "ValidationError",
]
