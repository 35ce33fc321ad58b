"""Expose the public utility surface for MailSync.

What:
  Re-export the logging and MIME helpers that other packages import without
  knowing the underlying module layout.

Interfaces:
  ``get_logger``, ``JsonLogger``, ``parse_message``, ``extract_content_type``,
  ``decode_text``, ``format_address``.
"""

from .logging import JsonLogger, get_logger
from .mime import decode_text, extract_content_type, format_address, parse_message

__all__ = [
    "JsonLogger",
    "get_logger",
    "decode_text",
    "extract_content_type",
    "format_address",
    "parse_message",
]
