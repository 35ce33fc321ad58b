"""Live change watches over a folder using IMAP IDLE.

What:
  Register a callback for a folder and keep a background worker waiting for
  server pushes; translate additions, expunges, and content changes into
  ``(ChangeType, Email | None)`` callbacks until the watch is released.

Why:
  Polling a mailbox wastes bandwidth and adds latency. IDLE lets the server
  push changes, but the connection needs a dedicated thread and a way to stop
  it from another thread.

How:
  :class:`ChangeWatcher` keeps a registry mapping opaque handle ids to the
  watch state (session, folder, and the two listeners). One daemon thread per
  watch re-arms IDLE in bounded cycles and checks registry membership before
  each cycle. :meth:`ChangeWatcher.unwatch` removes the entry and the
  listeners, then aborts the socket so a blocked cycle ends immediately.

Interfaces:
  :class:`ChangeWatcher`, :data:`WATCH_OPTIONS`.

Invariants & Safety:
  - The registry is the only state shared between caller threads and watch
    workers; every access holds its lock.
  - Flag-only changes never produce a callback.
  - No callback fires after :meth:`ChangeWatcher.unwatch` returned.
"""
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from imapclient.exceptions import IMAPClientError

from ..config.loader import get_runtime_config
from ..config.schema import RuntimeConfig
from ..imap.client import (
    ChangeKind,
    ImapFolder,
    MailSession,
    MessageChangedEvent,
    MessageCountListener,
    RawMessage,
)
from ..imap.connection import connect_and_open_folder
from ..utils.logging import get_logger
from .errors import FolderError, MappingError
from .models import ChangeType, ChangeWatchHandle, Email, FetchOptions, WatchOptions
from .retrieval import EmailMapper


ChangeCallback = Callable[[ChangeType, Optional[Email]], None]

# Rich option set applied to every message reported by a watch.
WATCH_OPTIONS = dict(
    retrieve_message_ids=True,
    retrieve_plain_text_bodies=True,
    retrieve_html_bodies=True,
    download_attachments=True,
)


@dataclass
class _Watch:
    handle: ChangeWatchHandle
    session: MailSession
    folder: ImapFolder
    count_listener: MessageCountListener
    changed_listener: Callable[[MessageChangedEvent], None]
    thread: Optional[threading.Thread] = None


class ChangeWatcher:
    """Registry and lifecycle manager for change watches."""

    def __init__(self, mapper: Optional[EmailMapper] = None, config: Optional[RuntimeConfig] = None) -> None:
        self._mapper = mapper or EmailMapper()
        self._config = config
        self._lock = threading.Lock()
        self._watches: Dict[str, _Watch] = {}
        self._logger = get_logger("mailsync.watch")

    @property
    def active_handles(self) -> List[ChangeWatchHandle]:
        with self._lock:
            return [watch.handle for watch in self._watches.values()]

    def is_registered(self, handle: ChangeWatchHandle) -> bool:
        with self._lock:
            return handle.watch_id in self._watches

    def is_alive(self, handle: ChangeWatchHandle) -> bool:
        """Whether ``handle`` is registered and its worker still waits for pushes."""

        with self._lock:
            entry = self._watches.get(handle.watch_id)
        return entry is not None and entry.thread is not None and entry.thread.is_alive()

    def watch(self, options: WatchOptions, on_change: ChangeCallback) -> Optional[ChangeWatchHandle]:
        """Start watching ``options.folder``.

        What:
          Opens the folder, attaches listeners, and starts the keep-alive
          worker.

        Why:
          Callers get a handle they can release from any thread; a folder
          that cannot be opened yields ``None`` instead of an exception.

        Args:
          options: Account and folder to watch.
          on_change: Receives ``(ChangeType, Email)`` for additions and
            modifications and ``(ChangeType.DELETED, None)`` for removals.

        Returns:
          The handle, or ``None`` when the folder could not be opened.
        """

        config = self._config or get_runtime_config()
        try:
            session, folder = connect_and_open_folder(options.account, options.folder, config.connection)
        except FolderError as exc:
            self._logger.error("Could not start watch", folder=options.folder, kind=exc.kind.value, error=str(exc))
            return None

        handle = ChangeWatchHandle(uuid.uuid4().hex, options.account, options.folder)
        fetch_options = FetchOptions(account=options.account, folder=options.folder, **WATCH_OPTIONS)

        def deliver(change: ChangeType, message: Optional[RawMessage]) -> None:
            if not self.is_registered(handle):
                return
            email = None
            if message is not None:
                try:
                    email = self._mapper.map(message, fetch_options)
                except MappingError as exc:
                    self._logger.error("Could not map changed message", seq=message.seq, error=repr(exc.__cause__ or exc))
                    return
            on_change(change, email)

        def on_added(messages: List[RawMessage]) -> None:
            self._mapper.prefetch(folder, messages, fetch_options)
            for message in messages:
                deliver(ChangeType.ADDED, message)

        def on_removed(messages: List[RawMessage]) -> None:
            for _ in messages:
                deliver(ChangeType.DELETED, None)

        def on_changed(event: MessageChangedEvent) -> None:
            if event.kind is ChangeKind.FLAGS_CHANGED:
                return
            self._mapper.prefetch(folder, [event.message], fetch_options)
            deliver(ChangeType.MODIFIED, event.message)

        entry = _Watch(handle, session, folder, MessageCountListener(on_added, on_removed), on_changed)
        folder.add_message_count_listener(entry.count_listener)
        folder.add_message_changed_listener(entry.changed_listener)
        with self._lock:
            self._watches[handle.watch_id] = entry
        entry.thread = threading.Thread(
            target=self._keep_alive,
            args=(entry, config.watch.idle_timeout_s),
            name=f"mailsync-watch-{handle.watch_id[:8]}",
            daemon=True,
        )
        entry.thread.start()
        self._logger.info("Watching folder", folder=options.folder, watch_id=handle.watch_id)
        return handle

    def _keep_alive(self, entry: _Watch, timeout: float) -> None:
        """Re-arm IDLE while the handle stays registered."""

        try:
            while self.is_registered(entry.handle):
                entry.folder.idle(timeout)
        except Exception as exc:  # the worker thread has no caller to raise to
            if self.is_registered(entry.handle):
                self._logger.error("Watch loop stopped", watch_id=entry.handle.watch_id, error=repr(exc))
            else:
                self._logger.debug("Watch loop ended after release", watch_id=entry.handle.watch_id)

    def unwatch(self, handle: ChangeWatchHandle) -> None:
        """Release ``handle``; later calls for the same handle do nothing."""

        with self._lock:
            entry = self._watches.pop(handle.watch_id, None)
        if entry is None:
            return
        entry.folder.remove_message_count_listener(entry.count_listener)
        entry.folder.remove_message_changed_listener(entry.changed_listener)
        entry.folder.mark_closed()
        try:
            entry.session.abort()
        except (IMAPClientError, OSError) as exc:
            self._logger.error("Could not close watched session", watch_id=handle.watch_id, error=repr(exc))
        self._logger.info("Stopped watching folder", folder=handle.folder, watch_id=handle.watch_id)

    def unwatch_all(self) -> None:
        for handle in self.active_handles:
            self.unwatch(handle)
