"""Facade for the IMAP integration layer.

What:
  Surface the session/folder/message handles built on ``imapclient`` and the
  connection management helpers used by the retrieval strategies and watches.

Interfaces:
  ``MailSession``, ``ImapFolder``, ``RawMessage``, ``FetchProfile``,
  ``BodyNode``, ``connect``, ``open_folder``, ``connect_and_open_folder``,
  ``list_folders_recursively``, ``classify_connect_error``.

Invariants & Safety:
  - Folders are opened read-only; no module in this package mutates mail.
"""

from .bodystructure import BodyNode, parse_body_structure
from .client import FetchProfile, ImapFolder, MailSession, RawMessage, open_session
from .connection import (
    classify_connect_error,
    close_quietly,
    connect,
    connect_and_open_folder,
    list_folders_recursively,
    open_folder,
)

__all__ = [
    "BodyNode",
    "parse_body_structure",
    "FetchProfile",
    "ImapFolder",
    "MailSession",
    "RawMessage",
    "open_session",
    "classify_connect_error",
    "close_quietly",
    "connect",
    "connect_and_open_folder",
    "list_folders_recursively",
    "open_folder",
]
