"""Error taxonomy raised inside the engine and surfaced through results.

What:
  Define the exception hierarchy for connection, folder, mapping, and fetch
  failures together with the enums that classify them.

Why:
  Callers of the public façade receive typed results rather than exceptions;
  the enums give them a stable vocabulary independent of ``imapclient`` and
  socket exception classes. Internally, raising keeps the control flow of the
  strategies linear.

How:
  Each error carries its classification as an attribute and chains the
  original exception via ``raise ... from``.

Interfaces:
  :class:`ConnectFailure`, :class:`FolderErrorType`, :class:`MailSyncError`,
  :class:`ConnectError`, :class:`FolderError`, :class:`MappingError`,
  :class:`FetchError`.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ConnectFailure(str, Enum):
    """Stable classification of a failed connect/login attempt."""

    WRONG_USERNAME = "wrong_username"
    WRONG_PASSWORD = "wrong_password"
    INVALID_SERVER_ADDRESS = "invalid_server_address"
    INVALID_SERVER_PORT = "invalid_server_port"
    UNKNOWN_ERROR = "unknown_error"


class FolderErrorType(str, Enum):
    """Reason a folder could not be resolved for a fetch or watch."""

    COULD_NOT_CONNECT = "could_not_connect"
    COULD_NOT_OPEN_STORE = "could_not_open_store"
    FOLDER_DOES_NOT_EXIST = "folder_does_not_exist"
    UNEXPECTED = "unexpected"


class MailSyncError(Exception):
    """Base class for all MailSync errors."""


class ConnectError(MailSyncError):
    """Opening or authenticating a session failed."""

    def __init__(self, message: str, kind: ConnectFailure = ConnectFailure.UNKNOWN_ERROR) -> None:
        super().__init__(message)
        self.kind = kind


class FolderError(MailSyncError):
    """The requested folder could not be located or opened."""

    def __init__(self, message: str, kind: FolderErrorType, *, connect_failure: Optional[ConnectFailure] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.connect_failure = connect_failure


class MappingError(MailSyncError):
    """A single message could not be turned into an :class:`Email`."""


class FetchError(MailSyncError):
    """A fetch operation failed as a whole."""
