"""Connection management: sessions, failure classification, and folder lookup.

What:
  Open an IMAP session for a :class:`~mailsync.core.models.MailAccount`,
  classify connection failures into :class:`~mailsync.core.errors.ConnectFailure`
  kinds, locate and open a folder by name fragment, and materialise the server's
  folder hierarchy as :class:`~mailsync.core.models.MailFolder` trees.

Why:
  Credential checks, fetches, and watches all start the same way. Keeping the
  connect/open sequence in one module guarantees they share timeouts, error
  vocabulary, and folder matching rules.

How:
  :func:`connect` delegates to :func:`mailsync.imap.client.open_session` with
  the configured TLS and timeout settings and wraps any failure in
  :class:`ConnectError` whose ``kind`` comes from :func:`classify_connect_error`.
  :func:`open_folder` scans the top-level listing case-insensitively.

Interfaces:
  :func:`connect`, :func:`classify_connect_error`, :func:`open_folder`,
  :func:`connect_and_open_folder`, :func:`list_folders_recursively`.

Invariants & Safety:
  - Network-level causes are checked before generic protocol errors because
    the specific exception types are subclasses of the generic ones.
  - Only top-level folders are matched by :func:`open_folder`.
  - A session opened by :func:`connect_and_open_folder` is closed again when
    the folder cannot be resolved.
"""
from __future__ import annotations

import socket
import ssl
from typing import Iterator, List, Optional, Tuple

from imapclient.exceptions import IMAPClientError, LoginError

from ..config.loader import get_runtime_config
from ..config.schema import ConnectionSettings
from ..core.errors import ConnectError, ConnectFailure, FolderError, FolderErrorType
from ..core.models import MailAccount, MailFolder
from ..utils.logging import get_logger
from .client import ImapFolder, MailSession, open_session


_UNKNOWN_USER_HINTS = (
    "unknown user",
    "no such user",
    "user not found",
    "invalid user",
    "user does not exist",
    "unknown account",
    "no such account",
    "mailbox does not exist",
)


def _cause_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and its causes, innermost last, without looping forever."""

    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_connect_error(exc: BaseException) -> ConnectFailure:
    """Map a connection failure onto a :class:`ConnectFailure` kind.

    What:
      Inspects the whole cause chain of ``exc`` and returns the most specific
      classification found.

    Why:
      Callers need to tell a mistyped host from a closed port from bad
      credentials without depending on socket or ``imapclient`` exception
      classes.

    How:
      DNS resolution failures (``socket.gaierror``) mean an invalid address; a
      refused TCP connection or a TLS handshake against a plaintext service
      mean an invalid port. IMAP has no response code for an unknown user, so
      a login rejection counts as a wrong username only when the server text
      says so (see ``_UNKNOWN_USER_HINTS``). Servers that answer
      ``[AUTHENTICATIONFAILED]`` for both cases, which most do, are reported
      as a wrong password. Everything else, including timeouts, is unknown.

    Args:
      exc: The exception raised while connecting, possibly a wrapper.

    Returns:
      The classification.
    """

    chain = list(_cause_chain(exc))
    for cause in chain:
        if isinstance(cause, socket.gaierror):
            return ConnectFailure.INVALID_SERVER_ADDRESS
    for cause in chain:
        if isinstance(cause, (ConnectionRefusedError, ssl.SSLError)):
            return ConnectFailure.INVALID_SERVER_PORT
    for cause in chain:
        if isinstance(cause, LoginError):
            text = str(cause).lower()
            if any(hint in text for hint in _UNKNOWN_USER_HINTS):
                return ConnectFailure.WRONG_USERNAME
            return ConnectFailure.WRONG_PASSWORD
    return ConnectFailure.UNKNOWN_ERROR


def connect(account: MailAccount, settings: Optional[ConnectionSettings] = None) -> MailSession:
    """Open an authenticated session for ``account``.

    Args:
      account: Credentials and endpoint.
      settings: Transport settings; defaults to the runtime configuration.

    Returns:
      The open :class:`MailSession`.

    Raises:
      ConnectError: With ``kind`` set by :func:`classify_connect_error`.
    """

    settings = settings or get_runtime_config().connection
    try:
        return open_session(
            account.server_address,
            account.server_port,
            account.username,
            account.password,
            ssl=settings.ssl,
            timeout=settings.connect_timeout_s,
        )
    except (IMAPClientError, OSError) as exc:
        kind = classify_connect_error(exc)
        message = (
            f"Could not connect to {account.server_address}:{account.server_port} "
            f"for username {account.username}"
        )
        get_logger("mailsync.connection").error(message, kind=kind.value, error=repr(exc))
        raise ConnectError(message, kind) from exc


def open_folder(session: MailSession, folder_name: str) -> ImapFolder:
    """Locate a top-level folder whose name contains ``folder_name`` and open it.

    What:
      Case-insensitive substring match over the top-level listing, first hit
      wins; ``"inbox"`` matches ``INBOX`` as well as ``Inbox``.

    Why:
      Providers disagree on folder capitalisation and decoration; substring
      matching lets callers ask for the conventional name.

    How:
      Lists the default folder's children and opens the match read-only when it
      is not open yet.

    Raises:
      FolderError: ``COULD_NOT_OPEN_STORE`` when the listing is refused,
        ``FOLDER_DOES_NOT_EXIST`` when nothing matches.
    """

    try:
        folders = session.default_folder.list()
    except IMAPClientError as exc:
        raise FolderError(f"Could not list folders: {exc}", FolderErrorType.COULD_NOT_OPEN_STORE) from exc
    needle = folder_name.lower()
    folder = next((candidate for candidate in folders if needle in candidate.name.lower()), None)
    if folder is None:
        names = [candidate.name for candidate in folders]
        message = f"Could not find folder {folder_name!r} in IMAP folders {names}"
        get_logger("mailsync.connection").error(message, folders=names)
        raise FolderError(message, FolderErrorType.FOLDER_DOES_NOT_EXIST)
    if not folder.is_open:
        folder.open(readonly=True)
    return folder


def connect_and_open_folder(
    account: MailAccount,
    folder_name: str,
    settings: Optional[ConnectionSettings] = None,
) -> Tuple[MailSession, ImapFolder]:
    """Connect and open ``folder_name``; the caller owns both results.

    Raises:
      FolderError: ``COULD_NOT_CONNECT`` (with the connect failure kind),
        the kinds raised by :func:`open_folder`, or ``UNEXPECTED`` for any
        other failure.
    """

    try:
        session = connect(account, settings)
    except ConnectError as exc:
        raise FolderError(str(exc), FolderErrorType.COULD_NOT_CONNECT, connect_failure=exc.kind) from exc
    try:
        return session, open_folder(session, folder_name)
    except FolderError:
        close_quietly(session)
        raise
    except (IMAPClientError, OSError) as exc:
        close_quietly(session)
        get_logger("mailsync.connection").error(f"Could not open folder {folder_name}", error=repr(exc))
        raise FolderError(f"Could not open folder {folder_name}: {exc}", FolderErrorType.UNEXPECTED) from exc


def list_folders_recursively(session: MailSession) -> List[MailFolder]:
    """Return the full folder hierarchy below the session's default folder."""

    return _map_folders(session.default_folder)


def _map_folders(folder: ImapFolder) -> List[MailFolder]:
    return [
        MailFolder(child.name, child.message_count, _map_folders(child))
        for child in folder.list()
    ]


def close_quietly(session: Optional[MailSession], folder: Optional[ImapFolder] = None) -> None:
    """Close ``folder`` and ``session``, logging instead of raising on failure."""

    logger = get_logger("mailsync.connection")
    if folder is not None:
        try:
            folder.close()
        except (IMAPClientError, OSError) as exc:
            logger.error("Could not close folder", folder=folder.full_name, error=repr(exc))
    if session is not None:
        try:
            session.close()
        except (IMAPClientError, OSError) as exc:
            logger.error("Could not close session", error=repr(exc))
