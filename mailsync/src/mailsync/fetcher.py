"""Public entry point for credential checks, folder listing, fetches, and watches.

What:
  Expose :class:`EmailFetcher`, a typed façade over the connection manager,
  the retrieval strategies, and the change watcher, with synchronous and
  thread-backed asynchronous variants.

Why:
  Embedding applications want results, not exceptions: every call here
  returns a result object describing success or the classified failure, and
  asynchronous calls hand back a :class:`concurrent.futures.Future` that is
  always resolved with a result.

How:
  Synchronous methods do the work inline. ``*_async`` variants start one
  dedicated :class:`threading.Thread` per call that runs the synchronous
  method and resolves the future with its return value.

Interfaces:
  :class:`EmailFetcher`.

Invariants & Safety:
  - No method raises for connection, folder, or mapping failures; only
    malformed options fail fast with :class:`ValueError`.
  - Each operation opens and closes its own session.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, Optional, TypeVar

from imapclient.exceptions import IMAPClientError

from .config.loader import get_runtime_config
from .config.schema import RuntimeConfig
from .core.errors import ConnectError, MailSyncError
from .core.models import (
    ChangeWatchHandle,
    CheckCredentialsResult,
    FetchOptions,
    FetchResult,
    GetMailFoldersResult,
    MailAccount,
    WatchOptions,
)
from .core.retrieval import Retriever
from .core.watch import ChangeCallback, ChangeWatcher
from .imap.connection import close_quietly, connect, list_folders_recursively
from .utils.logging import get_logger


T = TypeVar("T")


def _run_in_thread(name: str, target: Callable[[], T]) -> "Future[T]":
    future: "Future[T]" = Future()

    def runner() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(target())
        except BaseException as exc:  # resolved into the future for the caller
            future.set_exception(exc)

    threading.Thread(target=runner, name=name, daemon=True).start()
    return future


class EmailFetcher:
    """Typed façade over the MailSync engine.

    What:
      Bundles the five caller-facing operations: check credentials, list
      folders, fetch mails, watch a folder, and release a watch.

    Why:
      Hides sessions, folders, and protocol exceptions behind result objects
      so callers can drive the engine from UI threads or scripts alike.

    How:
      Holds one :class:`Retriever` and one :class:`ChangeWatcher`; the latter
      keeps the registry of live watches for this instance.

    Args:
      config: Runtime configuration; defaults to the cached process config.
    """

    def __init__(self, config: Optional[RuntimeConfig] = None) -> None:
        self._config = config
        self._logger = get_logger("mailsync.fetcher")
        self._retriever = Retriever(settings=self.config.connection)
        self._watcher = ChangeWatcher(config=self.config)

    @property
    def config(self) -> RuntimeConfig:
        return self._config or get_runtime_config()

    @property
    def watcher(self) -> ChangeWatcher:
        return self._watcher

    # Credentials -------------------------------------------------------
    def check_credentials(self, account: MailAccount) -> CheckCredentialsResult:
        """Connect and log in once, reporting the outcome."""

        try:
            session = connect(account, self.config.connection)
        except ConnectError as exc:
            return CheckCredentialsResult.from_failure(exc.kind)
        close_quietly(session)
        return CheckCredentialsResult.OK

    def check_credentials_async(self, account: MailAccount) -> "Future[CheckCredentialsResult]":
        return _run_in_thread("mailsync-check", lambda: self.check_credentials(account))

    # Folders -----------------------------------------------------------
    def list_folders(self, account: MailAccount) -> GetMailFoldersResult:
        """Return the account's complete folder tree.

        Connection and listing failures are reported through the result's
        ``error`` field with ``successful`` set to ``False``.
        """

        session = None
        try:
            session = connect(account, self.config.connection)
            return GetMailFoldersResult(True, list_folders_recursively(session))
        except (MailSyncError, IMAPClientError, OSError) as exc:
            self._logger.error("Could not list folders", account=str(account), error=repr(exc))
            return GetMailFoldersResult(False, [], exc)
        finally:
            close_quietly(session)

    def list_folders_async(self, account: MailAccount) -> "Future[GetMailFoldersResult]":
        return _run_in_thread("mailsync-folders", lambda: self.list_folders(account))

    # Fetching ----------------------------------------------------------
    def fetch_mails(
        self,
        options: FetchOptions,
        on_result: Optional[Callable[[FetchResult], None]] = None,
    ) -> FetchResult:
        """Run a fetch on the calling thread.

        ``on_result`` receives every partial result followed by the terminal
        one; the terminal result is also returned.
        """

        return self._retriever.fetch(options, on_result or (lambda result: None))

    def fetch_mails_async(
        self,
        options: FetchOptions,
        on_result: Optional[Callable[[FetchResult], None]] = None,
    ) -> "Future[FetchResult]":
        """Run a fetch on a dedicated worker thread.

        Callbacks are invoked from the worker thread, in emission order. The
        returned future resolves with the terminal result.
        """

        return _run_in_thread("mailsync-fetch", lambda: self.fetch_mails(options, on_result))

    # Watching ----------------------------------------------------------
    def watch(self, options: WatchOptions, on_change: ChangeCallback) -> Optional[ChangeWatchHandle]:
        return self._watcher.watch(options, on_change)

    def unwatch(self, handle: ChangeWatchHandle) -> None:
        self._watcher.unwatch(handle)
