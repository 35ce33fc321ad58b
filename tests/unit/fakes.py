"""In-memory IMAP backend used by unit tests.

What:
  Provide a drop-in replacement for :class:`imapclient.IMAPClient` that stores
  folders and messages in Python data structures while exposing the subset of
  the IMAP API MailSync relies upon: login, folder listing and status,
  sequence-number and UID fetches, UID search, and IDLE.

Why:
  Unit tests must exercise retrieval windows, extraction paths, and change
  watches without contacting real servers. The fake keeps behaviour
  deterministic and lets tests assert on round trips and push delivery.

How:
  Maintain per-folder lists of :class:`_MessageRecord` entries (list position
  is the sequence number). ``ENVELOPE`` and ``BODYSTRUCTURE`` responses are
  derived from the stored RFC822 bytes using ``imapclient.response_types``.
  IDLE pushes are queued by helper methods and returned by ``idle_check``.

Interfaces:
  :class:`FakeImapBackend`, :func:`build_message`, :func:`body_structure`.

Invariants & Safety:
  - UIDs increment monotonically per folder.
  - ``shutdown`` wakes a blocked ``idle_check`` with :class:`OSError`, the way
    a closed socket would.
  - Methods avoid network calls and operate solely on in-memory data.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import format_datetime, getaddresses, parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

from imapclient.exceptions import IMAPClientError
from imapclient.response_types import Address, Envelope

_CLOSED = object()


def build_message(
    subject: str = "Hello",
    sender: str = "Alice <alice@example.com>",
    to: str = "bob@example.com",
    cc: Optional[str] = None,
    text: Optional[str] = "Plain body",
    html: Optional[str] = None,
    attachments: Sequence[Tuple[Optional[str], str, bytes]] = (),
    date: Optional[datetime] = None,
    forwarded: Optional[Tuple[str, bytes]] = None,
) -> bytes:
    """Compose RFC822 bytes with optional HTML alternative and attachments.

    ``attachments`` holds ``(file_name, mime_type, content)`` triples; a
    ``None`` file name produces an attachment disposition without one.
    ``forwarded`` is a ``(file_name, message_bytes)`` pair attached as a
    ``message/rfc822`` part after the other attachments.
    """

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = sender
    message["To"] = to
    if cc:
        message["Cc"] = cc
    message["Date"] = format_datetime(date or datetime(2023, 5, 17, 9, 30, tzinfo=timezone.utc))
    if text is not None:
        message.set_content(text)
        if html is not None:
            message.add_alternative(html, subtype="html")
    elif html is not None:
        message.set_content(html, subtype="html")
    for file_name, mime_type, content in attachments:
        maintype, subtype = mime_type.split("/", 1)
        # Without a file name the part still gets a bare ``attachment`` disposition.
        message.add_attachment(content, maintype=maintype, subtype=subtype, filename=file_name)
    if forwarded is not None:
        file_name, message_bytes = forwarded
        message.add_attachment(BytesParser(policy=policy.default).parsebytes(message_bytes), filename=file_name)
    return message.as_bytes()


def _addresses(value: Optional[str]) -> Optional[Tuple[Address, ...]]:
    if not value:
        return None
    result = []
    for name, address in getaddresses([value]):
        mailbox, _, host = address.partition("@")
        result.append(Address(name.encode() if name else None, None, mailbox.encode(), host.encode()))
    return tuple(result)


def _param_tuple(part: EmailMessage) -> Optional[Tuple[bytes, ...]]:
    params = []
    for key, value in part.get_params()[1:] if part.get_params() else []:
        params.extend([key.encode(), str(value).encode()])
    return tuple(params) or None


def _filename_param(file_name: str) -> Tuple[bytes, bytes]:
    # Servers pass header parameters through, so non-ASCII names stay RFC 2231 encoded.
    if file_name.isascii():
        return (b"filename", file_name.encode())
    return (b"filename*", f"utf-8''{quote(file_name)}".encode())


def _envelope(message: EmailMessage) -> Envelope:
    date = message["Date"]
    return Envelope(
        parsedate_to_datetime(str(date)) if date else None,
        str(message["Subject"]).encode() if message["Subject"] else None,
        _addresses(message["From"]),
        _addresses(message["From"]),
        _addresses(message["Reply-To"]),
        _addresses(message["To"]),
        _addresses(message["Cc"]),
        _addresses(message["Bcc"]),
        None,
        str(message["Message-ID"]).encode() if message["Message-ID"] else None,
    )


def _structure(part: EmailMessage) -> Tuple[Any, ...]:
    """Render ``part`` the way ``imapclient`` returns ``BODYSTRUCTURE`` data.

    ``message/rfc822`` parts are leaves carrying the inner envelope and
    structure, not containers.
    """

    if part.get_content_maintype() == "multipart":
        children = [_structure(child) for child in part.iter_parts()]
        return (children, part.get_content_subtype().encode(), _param_tuple(part), None)
    if part.get_content_type() == "message/rfc822":
        inner = part.get_payload(0)
        encoded = inner.as_bytes()
    else:
        payload = part.get_payload()
        encoded = payload.encode("utf-8", errors="surrogateescape") if isinstance(payload, str) else bytes(payload)
    disposition = part.get_content_disposition()
    disposition_data = None
    if disposition:
        file_name = part.get_filename()
        disposition_data = (disposition.encode(), _filename_param(file_name) if file_name else None)
    base = (
        part.get_content_maintype().encode(),
        part.get_content_subtype().encode(),
        _param_tuple(part),
        None,
        None,
        (part.get("Content-Transfer-Encoding") or "7bit").encode(),
        len(encoded),
    )
    if part.get_content_maintype() == "text":
        return base + (encoded.count(b"\n"), None, disposition_data)
    if part.get_content_type() == "message/rfc822":
        return base + (_envelope(inner), _structure(inner), encoded.count(b"\n"), None, disposition_data)
    return base + (None, disposition_data)


@dataclass
class _MessageRecord:
    """Stored message plus the metadata IMAP fetches return for it."""

    uid: int
    message_bytes: bytes
    internaldate: datetime
    flags: Tuple[bytes, ...] = ()
    parsed: EmailMessage = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.parsed = BytesParser(policy=policy.default).parsebytes(self.message_bytes)

    def envelope(self) -> Envelope:
        return _envelope(self.parsed)

    def body_structure(self) -> Tuple[Any, ...]:
        return _structure(self.parsed)


@dataclass
class _Folder:
    flags: Tuple[bytes, ...] = ()
    messages: List[_MessageRecord] = field(default_factory=list)
    next_uid: int = 1


class FakeImapBackend:
    """Minimal IMAP backend satisfying the subset MailSync relies upon.

    What:
      Emulate enough of :class:`imapclient.IMAPClient` for the connection
      manager, retrieval strategies, and change watches.

    Why:
      Enables assertions on internal state (selected folder, fetch calls,
      logout/shutdown) that would be difficult against a live server.

    How:
      Folders are keyed by full name using ``/`` as hierarchy delimiter. A lock
      protects folder contents because watch workers fetch while tests push.
    """

    delimiter = "/"

    def __init__(self) -> None:
        self.folders: Dict[str, _Folder] = {"INBOX": _Folder()}
        self.use_uid = False
        self.selected: Optional[str] = None
        self.login_error: Optional[BaseException] = None
        self.list_error: Optional[BaseException] = None
        self.credentials: Optional[Tuple[str, str]] = None
        self.logged_out = False
        self.shut_down = False
        self.idling = False
        self.fetch_calls: List[Tuple[List[int], List[str], bool]] = []
        self._lock = threading.RLock()
        self._pushes: "queue.Queue[Any]" = queue.Queue()

    # Test setup ---------------------------------------------------------
    def add_folder(self, name: str, flags: Iterable[bytes] = ()) -> None:
        self.folders.setdefault(name, _Folder(tuple(flags)))

    def append(self, folder: str, message_bytes: bytes, *, uid: Optional[int] = None) -> int:
        """Store a message at the end of ``folder`` and return its UID."""

        with self._lock:
            target = self.folders.setdefault(folder, _Folder())
            assigned = uid if uid is not None else target.next_uid
            target.next_uid = max(target.next_uid, assigned + 1)
            target.messages.append(
                _MessageRecord(assigned, message_bytes, datetime(2023, 5, 17, 10, 0, tzinfo=timezone.utc))
            )
            return assigned

    def fill(self, folder: str, count: int) -> List[int]:
        return [self.append(folder, build_message(subject=f"Message {index}")) for index in range(1, count + 1)]

    # Session management -------------------------------------------------
    def login(self, username: str, password: str) -> bytes:
        if self.login_error is not None:
            raise self.login_error
        self.credentials = (username, password)
        return b"Logged in"

    def logout(self) -> bytes:
        self.logged_out = True
        return b"Logging out"

    def shutdown(self) -> None:
        self.shut_down = True
        self._pushes.put(_CLOSED)

    # Folder operations --------------------------------------------------
    def list_folders(self, directory: str = "", pattern: str = "*") -> List[Tuple[Tuple[bytes, ...], bytes, str]]:
        if self.list_error is not None:
            raise self.list_error
        prefix = pattern[:-1] if pattern.endswith("%") else pattern
        result = []
        for name, folder in self.folders.items():
            if not name.startswith(prefix):
                continue
            remainder = name[len(prefix):]
            if not remainder or self.delimiter in remainder:
                continue
            result.append((folder.flags, self.delimiter.encode(), name))
        return result

    def folder_status(self, name: str, what: Sequence[str]) -> Dict[bytes, int]:
        folder = self._folder(name)
        return {b"MESSAGES": len(folder.messages), b"UIDNEXT": folder.next_uid}

    def select_folder(self, name: str, readonly: bool = False) -> Dict[bytes, Any]:
        folder = self._folder(name)
        if b"\\Noselect" in folder.flags:
            raise IMAPClientError(f"select failed: {name} is not selectable")
        self.selected = name
        return {b"EXISTS": len(folder.messages), b"UIDNEXT": folder.next_uid, b"READ-ONLY": [b""] if readonly else []}

    def close_folder(self) -> bytes:
        self.selected = None
        return b"Closed"

    def _folder(self, name: str) -> _Folder:
        if name not in self.folders:
            raise IMAPClientError(f"Mailbox does not exist: {name}")
        return self.folders[name]

    # Message operations -------------------------------------------------
    def search(self, criteria: Sequence[Any]) -> List[int]:
        """Support ``ALL`` and ``UID n:*`` searches in UID mode."""

        with self._lock:
            messages = self.folders[self.selected].messages
            uids = [record.uid for record in messages]
            if list(criteria) == ["ALL"]:
                matches = uids
            elif len(criteria) == 2 and criteria[0] == "UID" and str(criteria[1]).endswith(":*"):
                start = int(str(criteria[1])[:-2])
                matches = [uid for uid in uids if uid >= start]
                # ``n:*`` always includes the highest UID.
                if not matches and uids:
                    matches = [max(uids)]
            else:
                raise IMAPClientError(f"unsupported search {criteria!r}")
            if self.use_uid:
                return matches
            return [uids.index(uid) + 1 for uid in matches]

    def fetch(self, ids: Iterable[int], items: Sequence[str]) -> Dict[int, Dict[bytes, Any]]:
        requested = [item.upper() for item in items]
        ids = list(ids)
        self.fetch_calls.append((ids, requested, self.use_uid))
        response: Dict[int, Dict[bytes, Any]] = {}
        with self._lock:
            messages = self.folders[self.selected].messages
            for identifier in ids:
                seq, record = self._lookup(messages, identifier)
                if record is None:
                    continue
                data: Dict[bytes, Any] = {b"SEQ": seq}
                for item in requested:
                    if item == "UID":
                        data[b"UID"] = record.uid
                    elif item == "ENVELOPE":
                        data[b"ENVELOPE"] = record.envelope()
                    elif item == "INTERNALDATE":
                        data[b"INTERNALDATE"] = record.internaldate
                    elif item == "RFC822.SIZE":
                        data[b"RFC822.SIZE"] = len(record.message_bytes)
                    elif item == "BODYSTRUCTURE":
                        data[b"BODYSTRUCTURE"] = record.body_structure()
                    elif item in {"BODY.PEEK[]", "BODY[]"}:
                        data[b"BODY[]"] = record.message_bytes
                    elif item == "FLAGS":
                        data[b"FLAGS"] = record.flags
                if self.use_uid:
                    data[b"UID"] = record.uid
                response[identifier] = data
        return response

    def _lookup(self, messages: List[_MessageRecord], identifier: int) -> Tuple[int, Optional[_MessageRecord]]:
        if self.use_uid:
            for index, record in enumerate(messages):
                if record.uid == identifier:
                    return index + 1, record
            return 0, None
        if 1 <= identifier <= len(messages):
            return identifier, messages[identifier - 1]
        return identifier, None

    # IDLE ---------------------------------------------------------------
    def idle(self) -> None:
        if self.shut_down:
            raise OSError("socket is closed")
        self.idling = True

    def idle_check(self, timeout: Optional[float] = None) -> List[Any]:
        try:
            first = self._pushes.get(timeout=timeout)
        except queue.Empty:
            return []
        batch = [first]
        while True:
            try:
                batch.append(self._pushes.get_nowait())
            except queue.Empty:
                break
        responses = []
        for item in batch:
            if item is _CLOSED:
                raise OSError("socket is closed")
            responses.extend(item)
        return responses

    def idle_done(self) -> Tuple[bytes, List[Any]]:
        self.idling = False
        return b"IDLE terminated", []

    # Push helpers -------------------------------------------------------
    def push_new_message(self, folder: str, message_bytes: bytes) -> int:
        """Deliver a new message and announce it with ``EXISTS``."""

        uid = self.append(folder, message_bytes)
        self._pushes.put([(len(self.folders[folder].messages), b"EXISTS")])
        return uid

    def push_expunge(self, folder: str, seq: int) -> None:
        with self._lock:
            del self.folders[folder].messages[seq - 1]
        self._pushes.put([(seq, b"EXPUNGE")])

    def push_flags(self, folder: str, seq: int, *flags: bytes) -> None:
        with self._lock:
            self.folders[folder].messages[seq - 1].flags = tuple(flags)
        self._pushes.put([(seq, b"FETCH", (b"FLAGS", tuple(flags)))])

    def push_content_change(self, folder: str, seq: int) -> None:
        with self._lock:
            record = self.folders[folder].messages[seq - 1]
        self._pushes.put([(seq, b"FETCH", (b"UID", record.uid, b"RFC822.SIZE", len(record.message_bytes)))])


def body_structure(message_bytes: bytes) -> Tuple[Any, ...]:
    """Return the ``BODYSTRUCTURE`` value a server would report for ``message_bytes``."""

    return _structure(BytesParser(policy=policy.default).parsebytes(message_bytes))
