"""Thread-backed asynchronous variants of the façade.

What:
  Check that ``*_async`` methods resolve their futures with the same results
  as the synchronous calls and deliver fetch callbacks in emission order from
  a worker thread.
"""

import threading

from imapclient.exceptions import LoginError

from mailsync.core.models import CheckCredentialsResult, FetchOptions
from mailsync.fetcher import EmailFetcher

TIMEOUT = 5.0


def test_check_credentials_async(imap_backend, account):
    imap_backend.login_error = LoginError("Invalid credentials")

    future = EmailFetcher().check_credentials_async(account)

    assert future.result(TIMEOUT) is CheckCredentialsResult.WRONG_PASSWORD


def test_list_folders_async(imap_backend, account):
    future = EmailFetcher().list_folders_async(account)

    result = future.result(TIMEOUT)
    assert result.successful
    assert [folder.name for folder in result.folders] == ["INBOX"]


def test_fetch_mails_async_runs_on_worker_thread(imap_backend, account):
    imap_backend.fill("INBOX", 5)
    calls = []

    def on_result(result):
        calls.append((threading.current_thread().name, result.completed, len(result.latest_chunk)))

    future = EmailFetcher().fetch_mails_async(FetchOptions(account, chunk_size=2), on_result)
    terminal = future.result(TIMEOUT)

    assert terminal.completed and len(terminal.all_retrieved_so_far) == 5
    assert [(completed, size) for _, completed, size in calls] == [(False, 2), (False, 2), (False, 1), (True, 0)]
    assert {name for name, _, _ in calls} == {"mailsync-fetch"}


def test_fetch_mails_async_reports_failures_through_the_result(imap_backend, account):
    imap_backend.login_error = LoginError("Invalid credentials")

    terminal = EmailFetcher().fetch_mails_async(FetchOptions(account)).result(TIMEOUT)

    assert terminal.completed
    assert terminal.error is not None
    assert terminal.all_retrieved_so_far == []
