"""MIME and header helpers shared by the extractor and the IMAP adapter.

What:
  Provide small, defensive utilities that turn raw RFC822 payloads into
  :class:`email.message.EmailMessage` objects, normalise ``Content-Type``
  strings, and render IMAP envelope fields (encoded words, addresses) as text.

Why:
  Messages come from arbitrary senders; headers may be RFC 2047 encoded, carry
  parameters, or be missing altogether. Normalising them in one place keeps
  the extraction logic free of encoding special cases.

How:
  Use the ``email`` package's :class:`~email.parser.BytesParser` with the
  default policy, :func:`email.header.decode_header` for encoded words, and
  :func:`email.utils.formataddr` for addresses.

Interfaces:
  :func:`parse_message`, :func:`extract_content_type`, :func:`decode_text`,
  :func:`format_address`.

Invariants & Safety:
  - Decoding never raises on malformed bytes; undecodable sequences are
    replaced so a single bad header cannot abort a fetch.
  - Content types are always lower-cased and stripped of parameters.
"""
from __future__ import annotations

from email import policy
from email.header import decode_header, make_header
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import formataddr
from typing import Any, Optional


def parse_message(raw: bytes) -> EmailMessage:
    """Parse raw ``BODY[]`` bytes into an :class:`EmailMessage`."""

    return BytesParser(policy=policy.default).parsebytes(raw)


def extract_content_type(value: Optional[str]) -> str:
    """Strip parameters from a ``Content-Type`` value and lower-case it.

    What:
      Turns ``'Multipart/Mixed; boundary="xyz"'`` into ``'multipart/mixed'``.

    Why:
      Parameters such as ``name=`` or ``boundary=`` are noise for callers that
      only need the MIME type.

    How:
      Truncates at the first ``;`` when it is not the leading character, then
      strips whitespace and lower-cases the remainder.

    Args:
      value: Raw header value, possibly ``None``.

    Returns:
      Normalised MIME type, or an empty string when ``value`` is empty.
    """

    if not value:
        return ""
    content_type = str(value)
    index = content_type.find(";")
    if index > 0:
        content_type = content_type[:index]
    return content_type.strip().lower()


def decode_text(value: Any) -> str:
    """Decode an IMAP string field (bytes, possibly RFC 2047 encoded) to text."""

    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = str(value)
    if "=?" not in text:
        return text
    try:
        return str(make_header(decode_header(text)))
    except (ValueError, LookupError):
        return text


def format_address(address: Any) -> str:
    """Render an ``imapclient`` envelope :class:`Address` as ``Name <box@host>``.

    Group syntax entries (no host) and missing addresses yield the bare mailbox
    or an empty string.
    """

    if address is None:
        return ""
    mailbox = decode_text(getattr(address, "mailbox", None))
    host = decode_text(getattr(address, "host", None))
    name = decode_text(getattr(address, "name", None))
    email_address = f"{mailbox}@{host}" if mailbox and host else (mailbox or host)
    if not email_address:
        return name
    if not name:
        return email_address
    if name.isascii():
        return formataddr((name, email_address))
    return f"{name} <{email_address}>"
