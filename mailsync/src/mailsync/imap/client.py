"""Stateful IMAP session, folder, and message handles built on ``imapclient``.

What:
  Wrap the third-party ``imapclient`` library into the small set of transport
  primitives the retrieval strategies and change watches need: open a session,
  list and open folders, address messages by sequence number or UID, prefetch
  message data in batches, resolve UIDs, and wait for server push via IDLE.

Why:
  ``imapclient`` speaks in raw fetch dictionaries keyed by bytes and switches
  between UID and sequence-number semantics through a mutable flag. The
  strategies want stable handles instead: a :class:`RawMessage` that knows its
  sequence number, caches whatever a batched fetch returned, and only goes back
  to the server when a field was not prefetched.

How:
  :class:`MailSession` owns exactly one ``IMAPClient`` connection created in
  sequence-number mode. :class:`ImapFolder` issues commands on behalf of one
  mailbox and temporarily flips to UID mode for UID lookups.
  :class:`FetchProfile` translates requested items into fetch attributes, and
  IDLE responses are decoded into listener callbacks.

Interfaces:
  :func:`open_session`, :class:`MailSession`, :class:`ImapFolder`,
  :class:`RawMessage`, :class:`FetchProfile`, :class:`MessageChangedEvent`,
  :class:`MessageCountListener`.

Invariants & Safety:
  - A session, its folder, and its messages are used by a single operation;
    only listener registration may race with dispatch and is lock-protected.
  - Folders are opened read-only by the engine; nothing here mutates mail.
  - ``RawMessage.structure()`` and ``RawMessage.content()`` return cached data
    when the batch prefetch included it and fetch it on demand otherwise.
"""
from __future__ import annotations

import contextlib
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError

from .bodystructure import BodyNode, parse_body_structure


ENVELOPE = b"ENVELOPE"
SIZE = b"RFC822.SIZE"
INTERNALDATE = b"INTERNALDATE"
BODYSTRUCTURE = b"BODYSTRUCTURE"
BODY = b"BODY[]"
UID = b"UID"
SEQ = b"SEQ"

_FLAG_ONLY_ITEMS = {b"FLAGS", b"UID", b"MODSEQ"}


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return "" if value is None else str(value)


@dataclass
class FetchProfile:
    """Items to load for a batch of messages in one ``FETCH`` command.

    ``content_info`` loads the body structure (part types, sizes, dispositions)
    and ``content`` the complete message source.
    """

    envelope: bool = True
    size: bool = True
    content_info: bool = False
    content: bool = False

    def items(self) -> List[str]:
        items: List[str] = []
        if self.envelope:
            items.extend(["ENVELOPE", "INTERNALDATE"])
        if self.size:
            items.append("RFC822.SIZE")
        if self.content_info:
            items.append("BODYSTRUCTURE")
        if self.content:
            items.append("BODY.PEEK[]")
        return items


class RawMessage:
    """Handle for one message in an open folder.

    What:
      Remembers the message's sequence number (and UID once known) together
      with the data a fetch returned for it.

    Why:
      Mapping code reads envelope, size, structure, and content from the same
      object regardless of whether they were prefetched for a whole window or
      must be loaded individually.

    How:
      :meth:`apply` merges a fetch response into the cached attributes;
      :meth:`structure` and :meth:`content` fall back to a single-message
      fetch through the owning folder when the cache is empty.
    """

    def __init__(self, folder: "ImapFolder", seq: int, uid: Optional[int] = None) -> None:
        self.folder = folder
        self.seq = seq
        self.uid = uid
        self.envelope: Any = None
        self.size: Optional[int] = None
        self.internal_date: Optional[datetime] = None
        self._structure: Optional[BodyNode] = None
        self._content: Optional[bytes] = None

    def __repr__(self) -> str:
        return f"RawMessage(seq={self.seq}, uid={self.uid})"

    def apply(self, data: Dict[bytes, Any]) -> None:
        """Merge one message's fetch response into the cached fields."""

        if ENVELOPE in data:
            self.envelope = data[ENVELOPE]
        if SIZE in data:
            self.size = int(data[SIZE])
        if INTERNALDATE in data:
            self.internal_date = data[INTERNALDATE]
        if BODYSTRUCTURE in data and data[BODYSTRUCTURE]:
            self._structure = parse_body_structure(data[BODYSTRUCTURE])
        if BODY in data:
            self._content = bytes(data[BODY])
        if UID in data:
            self.uid = int(data[UID])

    @property
    def has_structure(self) -> bool:
        return self._structure is not None

    @property
    def has_content(self) -> bool:
        return self._content is not None

    def structure(self) -> Optional[BodyNode]:
        """Return the body structure, fetching it when it was not prefetched."""

        if not self.has_structure:
            self.folder.fetch([self], FetchProfile(envelope=False, size=False, content_info=True))
        return self._structure

    def content(self) -> bytes:
        """Return the full message source, fetching it when it was not prefetched."""

        if not self.has_content:
            self.folder.fetch([self], FetchProfile(envelope=False, size=False, content=True))
        return self._content or b""


class ChangeKind(str, Enum):
    FLAGS_CHANGED = "flags_changed"
    CONTENT_CHANGED = "content_changed"


@dataclass
class MessageChangedEvent:
    kind: ChangeKind
    message: RawMessage


class MessageCountListener:
    """Receives messages appearing in or disappearing from a folder.

    The default implementations ignore the notification; callers override the
    ones they need or pass callables to the constructor.
    """

    def __init__(
        self,
        on_added: Optional[Callable[[List[RawMessage]], None]] = None,
        on_removed: Optional[Callable[[List[RawMessage]], None]] = None,
    ) -> None:
        self._on_added = on_added
        self._on_removed = on_removed

    def messages_added(self, messages: List[RawMessage]) -> None:
        if self._on_added is not None:
            self._on_added(messages)

    def messages_removed(self, messages: List[RawMessage]) -> None:
        if self._on_removed is not None:
            self._on_removed(messages)


MessageChangedListener = Callable[[MessageChangedEvent], None]


class ImapFolder:
    """One mailbox on the server, addressed through its owning session.

    What:
      Lists child folders, opens the mailbox, resolves message handles, runs
      batched fetches, and turns IDLE responses into listener callbacks.

    Why:
      The retrieval strategies and watches should not care whether a lookup
      is done with sequence numbers or UIDs, nor how ``imapclient`` shapes its
      responses.

    How:
      Keeps the ``EXISTS`` count reported at selection time and updated from
      unsolicited responses; UID commands run inside
      :meth:`MailSession.uid_commands`.
    """

    def __init__(
        self,
        session: "MailSession",
        full_name: str,
        delimiter: Optional[str] = None,
        flags: Sequence[Any] = (),
    ) -> None:
        self.session = session
        self.full_name = full_name
        self.delimiter = delimiter or None
        self.flags = tuple(_decode(flag).lower() for flag in flags)
        self._open = False
        self._exists = 0
        self._listener_lock = threading.RLock()
        self._count_listeners: List[MessageCountListener] = []
        self._changed_listeners: List[MessageChangedListener] = []

    def __repr__(self) -> str:
        return f"ImapFolder({self.full_name!r})"

    @property
    def name(self) -> str:
        if self.delimiter and self.delimiter in self.full_name:
            return self.full_name.rsplit(self.delimiter, 1)[-1]
        return self.full_name

    @property
    def is_selectable(self) -> bool:
        return "\\noselect" not in self.flags and "\\nonexistent" not in self.flags

    @property
    def is_open(self) -> bool:
        return self._open

    def list(self) -> List["ImapFolder"]:
        """Return the direct children of this folder.

        What:
          Issues ``LIST "" <pattern>`` with ``%`` so only one hierarchy level is
          returned.

        Why:
          Recursive listing is driven by the caller one level at a time, which
          keeps leaf folders cheap (an empty listing) and avoids depending on
          server support for ``*`` ordering.

        Returns:
          Child folders in server order; an empty list for leaves.
        """

        if self.full_name:
            if not self.delimiter:
                return []
            pattern = f"{self.full_name}{self.delimiter}%"
        else:
            pattern = "%"
        children = []
        for flags, delimiter, name in self.session.client.list_folders("", pattern):
            full_name = _decode(name)
            if not full_name or full_name == self.full_name:
                continue
            children.append(ImapFolder(self.session, full_name, _decode(delimiter), flags))
        return children

    @property
    def message_count(self) -> int:
        """Message count of the folder; a ``STATUS`` round trip unless it is open."""

        if self._open:
            return self._exists
        if not self.full_name or not self.is_selectable:
            return 0
        status = self.session.client.folder_status(self.full_name, ["MESSAGES"])
        return int(status.get(b"MESSAGES", 0))

    def open(self, readonly: bool = True) -> None:
        info = self.session.client.select_folder(self.full_name, readonly=readonly)
        self._exists = int(info.get(b"EXISTS", 0))
        self._open = True

    def close(self) -> None:
        if not self._open:
            return
        try:
            self.session.client.close_folder()
        finally:
            self._open = False

    def mark_closed(self) -> None:
        self._open = False

    def get_messages(self, start: int, end: int) -> List[RawMessage]:
        """Return handles for sequence numbers ``start..end`` (inclusive, 1-based).

        No round trip happens here; data is loaded by :meth:`fetch`.
        """

        return [RawMessage(self, seq) for seq in range(max(1, start), min(end, self._exists) + 1)]

    def get_messages_by_uid_range(self, start_uid: int) -> List[RawMessage]:
        """Return handles for all messages whose UID is ``>= start_uid``.

        ``UID SEARCH UID n:*`` always matches the highest UID even when it is
        below ``n``; such answers are filtered out.
        """

        with self.session.uid_commands() as client:
            uids = [int(uid) for uid in client.search(["UID", f"{start_uid}:*"])]
        return self.get_messages_by_uids(sorted(uid for uid in uids if uid >= start_uid))

    def get_messages_by_uids(self, uids: Iterable[int]) -> List[RawMessage]:
        """Resolve UIDs to message handles, preserving the order of ``uids``.

        UIDs unknown to the server are skipped.
        """

        wanted = list(uids)
        if not wanted:
            return []
        with self.session.uid_commands() as client:
            response = client.fetch(wanted, ["UID"])
        messages = []
        for uid in wanted:
            data = response.get(uid)
            if data is None or SEQ not in data:
                continue
            messages.append(RawMessage(self, int(data[SEQ]), uid))
        return messages

    def fetch(self, messages: Sequence[RawMessage], profile: FetchProfile) -> None:
        """Load ``profile`` items for all ``messages`` in a single command.

        What:
          Issues one sequence-number ``FETCH`` and merges each message's
          response into its handle.

        Why:
          Per-message round trips dominate fetch time on mailboxes of any size;
          batching the window is what keeps retrieval fast.

        Args:
          messages: Handles belonging to this folder.
          profile: Items to load.
        """

        items = profile.items()
        if not messages or not items:
            return
        by_seq = {message.seq: message for message in messages}
        response = self.session.client.fetch(sorted(by_seq), items)
        for seq, data in response.items():
            message = by_seq.get(seq)
            if message is not None:
                message.apply(data)

    def get_uid(self, message: RawMessage) -> Optional[int]:
        """Return the message's UID, resolving it with one ``FETCH`` if unknown."""

        if message.uid is None:
            response = self.session.client.fetch([message.seq], ["UID"])
            data = response.get(message.seq)
            if data is not None and UID in data:
                message.uid = int(data[UID])
        return message.uid

    # Listener handling -------------------------------------------------
    def add_message_count_listener(self, listener: MessageCountListener) -> None:
        with self._listener_lock:
            self._count_listeners.append(listener)

    def remove_message_count_listener(self, listener: MessageCountListener) -> None:
        with self._listener_lock:
            if listener in self._count_listeners:
                self._count_listeners.remove(listener)

    def add_message_changed_listener(self, listener: MessageChangedListener) -> None:
        with self._listener_lock:
            self._changed_listeners.append(listener)

    def remove_message_changed_listener(self, listener: MessageChangedListener) -> None:
        with self._listener_lock:
            if listener in self._changed_listeners:
                self._changed_listeners.remove(listener)

    def idle(self, timeout: float) -> None:
        """Run one IDLE cycle and dispatch whatever the server pushed.

        What:
          Enters IDLE, waits up to ``timeout`` seconds for unsolicited
          responses, leaves IDLE, and notifies listeners.

        Why:
          Servers drop IDLE after a while; re-arming it in bounded cycles keeps
          the push channel alive and gives the caller a point to stop.

        How:
          Listeners run after ``DONE`` so they may issue commands (for example
          to fetch an added message) on the same connection.

        Args:
          timeout: Maximum seconds to wait for a push before re-arming.
        """

        client = self.session.client
        client.idle()
        responses = list(client.idle_check(timeout=timeout))
        _, trailing = client.idle_done()
        responses.extend(trailing or [])
        self.dispatch(responses)

    def dispatch(self, responses: Iterable[Any]) -> None:
        """Translate unsolicited ``EXISTS``/``EXPUNGE``/``FETCH`` responses into callbacks."""

        for response in responses:
            if not isinstance(response, tuple) or len(response) < 2 or not isinstance(response[0], int):
                continue
            number, kind = response[0], _decode(response[1]).upper()
            if kind == "EXISTS":
                previous = self._exists
                self._exists = number
                if number > previous:
                    added = [RawMessage(self, seq) for seq in range(previous + 1, number + 1)]
                    self._notify_count(added=added)
            elif kind == "EXPUNGE":
                self._exists = max(0, self._exists - 1)
                self._notify_count(removed=[RawMessage(self, number)])
            elif kind == "FETCH":
                data = response[2] if len(response) > 2 else ()
                items = {_decode(key).upper().encode() for key in list(data)[::2]}
                kind_changed = ChangeKind.FLAGS_CHANGED if items <= _FLAG_ONLY_ITEMS else ChangeKind.CONTENT_CHANGED
                self._notify_changed(MessageChangedEvent(kind_changed, RawMessage(self, number)))

    def _notify_count(self, added: Optional[List[RawMessage]] = None, removed: Optional[List[RawMessage]] = None) -> None:
        # Delivery holds the lock so a listener removed by another thread
        # never sees a callback after removal returned.
        with self._listener_lock:
            for listener in list(self._count_listeners):
                if listener not in self._count_listeners:
                    continue
                if added:
                    listener.messages_added(added)
                if removed:
                    listener.messages_removed(removed)

    def _notify_changed(self, event: MessageChangedEvent) -> None:
        with self._listener_lock:
            for listener in list(self._changed_listeners):
                if listener in self._changed_listeners:
                    listener(event)


class MailSession:
    """Owns one authenticated ``IMAPClient`` connection.

    What:
      Provides the root folder handle, UID-mode switching, and orderly
      shutdown.

    Why:
      The connection is exclusively owned by the fetch or watch that opened
      it; bundling it with its lifecycle helpers makes that ownership explicit.
    """

    def __init__(self, client: IMAPClient, server_address: str = "") -> None:
        self._client: Optional[IMAPClient] = client
        self.server_address = server_address

    @property
    def client(self) -> IMAPClient:
        if self._client is None:
            raise RuntimeError("IMAP session is closed")
        return self._client

    @property
    def is_closed(self) -> bool:
        return self._client is None

    @property
    def default_folder(self) -> ImapFolder:
        return ImapFolder(self, "")

    @contextlib.contextmanager
    def uid_commands(self) -> Iterator[IMAPClient]:
        """Temporarily switch the client to UID semantics.

        Yields:
          The underlying client with ``use_uid`` enabled; the previous mode is
          restored on exit.
        """

        client = self.client
        previous = client.use_uid
        client.use_uid = True
        try:
            yield client
        finally:
            client.use_uid = previous

    def close(self) -> None:
        """Log out and release the connection."""

        if self._client is None:
            return
        try:
            self._client.logout()
        finally:
            self._client = None

    def abort(self) -> None:
        """Close the socket without ``LOGOUT``.

        Used to release a session whose connection is blocked in IDLE on
        another thread; the blocked read fails and its loop ends.
        """

        if self._client is None:
            return
        client, self._client = self._client, None
        client.shutdown()


def open_session(
    host: str,
    port: int,
    username: str,
    password: str,
    *,
    ssl: bool = True,
    timeout: Optional[float] = None,
) -> MailSession:
    """Connect and log in, returning a :class:`MailSession`.

    What:
      Creates an ``IMAPClient`` in sequence-number mode and authenticates.

    Why:
      Retrieval windows are expressed in sequence numbers; UID commands opt in
      explicitly through :meth:`MailSession.uid_commands`.

    How:
      On login failure the half-open connection is shut down before the
      original exception propagates to the caller for classification.

    Raises:
      OSError: For network-level failures (DNS, refused connection, TLS).
      imapclient.exceptions.IMAPClientError: For protocol and login failures.
    """

    client = IMAPClient(host, port=port, ssl=ssl, use_uid=False, timeout=timeout)
    try:
        client.login(username, password)
    except (IMAPClientError, OSError):
        with contextlib.suppress(IMAPClientError, OSError):
            client.shutdown()
        raise
    return MailSession(client, host)
