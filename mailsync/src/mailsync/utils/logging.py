"""Structured JSON logging shared by the connection, fetch, and watch layers.

What:
  Every MailSync component writes one JSON object per line to ``stderr`` with
  a fixed set of core fields plus whatever context the call site attaches.

Why:
  Fetch and watch workers run on background threads where a traceback on the
  console is easy to lose. Line-oriented JSON survives being piped through
  ``jq`` or a log shipper, and masking credentials and message content at the
  source keeps debugging output safe to paste into a bug report.

How:
  :class:`JsonLogger` holds the stream, a component tag and a threshold.
  Context keyword arguments pass through :meth:`JsonLogger._redact` before
  ``json.dump`` writes them; anything the encoder cannot handle (exceptions,
  enums, datetimes) is rendered with ``str``.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`, :data:`LEVELS`.

Invariants & Safety:
  - Each line carries ``ts`` (UTC ISO8601), ``lvl``, ``msg`` and ``component``.
  - Values under ``password``, ``subject``, ``body`` or ``content`` become
    ``[redacted]`` at any nesting depth, including inside lists.
  - Writes are serialised with a lock because fetch and watch workers share
    loggers across threads.
"""
from __future__ import annotations

import json
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"

LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}

SENSITIVE_KEYS = frozenset({"password", "subject", "body", "content"})

_WRITE_LOCK = threading.Lock()


@dataclass
class JsonLogger:
    """Line-oriented JSON logger bound to one component.

    Attributes:
      stream: File-like target; ``stderr`` so ``stdout`` stays free for CLI
        output.
      component: Tag written into every entry.
      level: Minimum severity name; lower entries are dropped.
    """

    stream: Any = field(default_factory=lambda: sys.stderr)
    component: str = "mailsync"
    level: str = "INFO"

    def enabled_for(self, level: str) -> bool:
        return LEVELS.get(level.upper(), 0) >= LEVELS.get(self.level.upper(), 0)

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Write one entry if ``level`` clears the threshold.

        Core fields are written first; redacted ``extra`` keys are merged on
        top, so a context key named ``msg`` would shadow the message.

        Args:
          level: Severity name (``DEBUG``, ``INFO``, ``WARN`` or ``ERROR``).
          message: Core log message.
          extra: Optional context dictionary that will be redacted recursively.
        """

        if not self.enabled_for(level):
            return
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if extra:
            payload.update(self._redact(extra))
        with _WRITE_LOCK:
            json.dump(payload, self.stream, separators=(",", ":"), default=str)
            self.stream.write("\n")
            self.stream.flush()

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log("DEBUG", message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log an informational message with structured context."""

        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log a warning message while enforcing redaction.

        Used for recoverable oddities such as attachments without a file name,
        where extraction continues with a synthesised value.
        """

        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log an error entry.

        Args:
          message: Summary of the failure condition.
          **kwargs: Additional fields for troubleshooting; exceptions are
            rendered with ``str`` by the JSON encoder.
        """

        self.log("ERROR", message, extra=kwargs)

    @staticmethod
    def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``data`` with sensitive values masked."""

        result: Dict[str, Any] = {}
        for key, value in data.items():
            result[key] = REDACTED if key in SENSITIVE_KEYS else JsonLogger._scrub(value)
        return result

    @staticmethod
    def _scrub(value: Any) -> Any:
        if isinstance(value, dict):
            return JsonLogger._redact(value)
        if isinstance(value, (list, tuple)):
            return [JsonLogger._scrub(item) for item in value]
        return value


def get_logger(component: str, level: Optional[str] = None) -> JsonLogger:
    """Construct a :class:`JsonLogger` for the requested component.

    What:
      Returns a ready-to-use :class:`JsonLogger` bound to ``component``.

    Why:
      Call sites should avoid instantiating :class:`JsonLogger` directly so the
      threshold can follow the runtime configuration in one place.

    How:
      Uses ``level`` when given, otherwise reads ``logging.level`` from
      :func:`mailsync.config.loader.get_runtime_config`.

    Args:
      component: Logical subsystem name to include in log payloads.
      level: Optional explicit threshold overriding the configuration.

    Returns:
      Configured :class:`JsonLogger` instance.
    """

    if level is None:
        from ..config.loader import get_runtime_config

        level = get_runtime_config().logging.level
    return JsonLogger(component=component, level=level)
