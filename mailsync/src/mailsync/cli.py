"""MailSync command-line interface.

What:
  Provide a Typer-based command-line entry point exposing the façade
  operations: ``check`` (credential check), ``folders`` (folder tree),
  ``fetch`` (one fetch with every option toggle), and ``watch`` (stream
  changes until interrupted).

Why:
  Operators debugging an account need the same behaviour as embedding
  applications without writing code. Printing one JSON document per result
  keeps the output scriptable.

How:
  Account options are shared by all commands and can be supplied through
  ``MAILSYNC_*`` environment variables. Each command builds the domain
  objects, calls :class:`~mailsync.fetcher.EmailFetcher`, echoes JSON lines,
  and maps failed results to exit code ``1``.

Interfaces:
  ``app`` (Typer application), ``check``, ``folders``, ``fetch``, ``watch``.

Invariants & Safety:
  - Exit codes follow shell expectations (``0`` success, ``1`` failure).
  - Passwords are never echoed.
"""
from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .config.loader import RuntimeConfigError, get_runtime_config, load_runtime_config
from .core.models import (
    ChangeType,
    CheckCredentialsResult,
    Email,
    FetchOptions,
    FetchResult,
    MailAccount,
    MailFolder,
    WatchOptions,
)
from .fetcher import EmailFetcher
from .utils.logging import get_logger


app = typer.Typer(help="MailSync IMAP fetch and watch tool")

HOST = typer.Option(..., "--host", envvar="MAILSYNC_HOST", help="IMAP server address")
PORT = typer.Option(993, "--port", envvar="MAILSYNC_PORT", help="IMAP server port")
USERNAME = typer.Option(..., "--username", envvar="MAILSYNC_USERNAME", help="Login name")
PASSWORD = typer.Option(..., "--password", envvar="MAILSYNC_PASSWORD", help="Login password")


def _echo(payload: Dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, default=str, sort_keys=True))


def _email_summary(email: Email) -> Dict[str, Any]:
    return {
        "message_id": email.message_id,
        "sender": email.sender,
        "recipients": email.recipients,
        "subject": email.subject,
        "received_at": email.received_at.isoformat() if email.received_at else None,
        "sent_at": email.sent_at.isoformat() if email.sent_at else None,
        "size_bytes": email.size_bytes,
        "content_type": email.content_type,
        "has_plain_text_body": email.plain_text_body is not None,
        "has_html_body": email.html_body is not None,
        "attachment_infos": [str(info) for info in email.attachment_infos],
        "attachments": [
            {"file_name": attachment.file_name, "mime_type": attachment.mime_type, "size_bytes": attachment.size_bytes}
            for attachment in email.attachments
        ],
    }


def _folder_tree(folder: MailFolder) -> Dict[str, Any]:
    return {
        "name": folder.name,
        "message_count": folder.message_count,
        "sub_folders": [_folder_tree(child) for child in folder.sub_folders],
    }


def _result_summary(result: FetchResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "completed": result.completed,
        "retrieved": len(result.all_retrieved_so_far),
        "chunk": len(result.latest_chunk),
        "error": str(result.error) if result.error else None,
    }
    if result.completed:
        payload["emails"] = [_email_summary(email) for email in result.all_retrieved_so_far]
    return payload


@app.callback()
def main_options(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to mailsync.yaml"),
) -> None:
    """Load the runtime configuration before running a command."""

    try:
        load_runtime_config(config, reload=config is not None)
    except RuntimeConfigError as exc:
        get_logger("mailsync.cli").error("Could not load configuration", error=str(exc))
        raise typer.Exit(code=1) from exc


@app.command("check")
def check(
    host: str = HOST,
    port: int = PORT,
    username: str = USERNAME,
    password: str = PASSWORD,
) -> None:
    """Verify that the account can connect and log in."""

    result = EmailFetcher().check_credentials(MailAccount(username, password, host, port))
    _echo({"result": result.value})
    if result is not CheckCredentialsResult.OK:
        raise typer.Exit(code=1)


@app.command("folders")
def folders(
    host: str = HOST,
    port: int = PORT,
    username: str = USERNAME,
    password: str = PASSWORD,
) -> None:
    """Print the account's folder hierarchy with message counts."""

    result = EmailFetcher().list_folders(MailAccount(username, password, host, port))
    _echo(
        {
            "successful": result.successful,
            "folders": [_folder_tree(folder) for folder in result.folders],
            "error": str(result.error) if result.error else None,
        }
    )
    if not result.successful:
        raise typer.Exit(code=1)


@app.command("fetch")
def fetch(
    host: str = HOST,
    port: int = PORT,
    username: str = USERNAME,
    password: str = PASSWORD,
    folder: Optional[str] = typer.Option(None, help="Folder name fragment to open [config: fetch.default_folder]"),
    message_ids: bool = typer.Option(False, "--message-ids", help="Resolve persistent message ids"),
    plain: bool = typer.Option(False, "--plain", help="Retrieve plain text bodies"),
    html: bool = typer.Option(False, "--html", help="Retrieve HTML bodies"),
    attachment_infos: bool = typer.Option(False, "--attachment-infos", help="Retrieve attachment metadata"),
    download: bool = typer.Option(False, "--download", help="Download attachment content"),
    chunk_size: Optional[int] = typer.Option(
        None, "--chunk-size", help="Report progress every N messages [config: fetch.chunk_size]"
    ),
    from_id: Optional[int] = typer.Option(None, "--from-id", help="Fetch messages with id >= this id"),
    ids: Optional[List[int]] = typer.Option(None, "--id", help="Fetch exactly these ids (repeatable)"),
    latest_first: bool = typer.Option(False, "--latest-first", help="Walk chunks from newest to oldest"),
) -> None:
    """Fetch mails and print one JSON line per emitted result."""

    settings = get_runtime_config().fetch
    options = FetchOptions(
        account=MailAccount(username, password, host, port),
        folder=folder or settings.default_folder,
        retrieve_message_ids=message_ids,
        retrieve_plain_text_bodies=plain,
        retrieve_html_bodies=html,
        retrieve_attachment_infos=attachment_infos,
        download_attachments=download,
        chunk_size=settings.chunk_size if chunk_size is None else chunk_size,
        retrieve_from_message_id=from_id,
        message_ids=list(ids) if ids else None,
        latest_first=latest_first,
    )
    result = EmailFetcher().fetch_mails(options, lambda emitted: _echo(_result_summary(emitted)))
    if not result.successful:
        raise typer.Exit(code=1)


@app.command("watch")
def watch(
    host: str = HOST,
    port: int = PORT,
    username: str = USERNAME,
    password: str = PASSWORD,
    folder: Optional[str] = typer.Option(None, help="Folder name fragment to watch [config: watch.default_folder]"),
    poll: float = typer.Option(1.0, help="Seconds between liveness checks of the watch"),
) -> None:
    """Print one JSON line per folder change until interrupted."""

    fetcher = EmailFetcher()

    def on_change(change: ChangeType, email: Optional[Email]) -> None:
        _echo({"change": change.value, "email": _email_summary(email) if email else None})

    account = MailAccount(username, password, host, port)
    handle = fetcher.watch(WatchOptions(account, folder or get_runtime_config().watch.default_folder), on_change)
    if handle is None:
        raise typer.Exit(code=1)
    try:
        while fetcher.watcher.is_alive(handle):
            time.sleep(poll)
    except KeyboardInterrupt:
        pass
    finally:
        fetcher.unwatch(handle)


def main() -> None:
    """Execute the Typer application entry point."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
