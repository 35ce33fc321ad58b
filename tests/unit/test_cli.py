"""Tests for the Typer command-line interface.

What:
  Invoke ``mailsync`` commands through :class:`typer.testing.CliRunner`
  against the fake backend and check exit codes and JSON output.

Why:
  The CLI is the operator's view of the façade; exit codes must reflect the
  result objects and every emitted fetch result must produce one line.
"""

import json

from typer.testing import CliRunner

from fakes import build_message
from mailsync.cli import app

runner = CliRunner()

ACCOUNT_ARGS = ["--host", "imap.example.com", "--username", "user", "--password", "secret"]


def _payloads(result):
    """Return the JSON documents printed by the command, skipping log lines."""

    documents = []
    for line in result.output.splitlines():
        if not line.startswith("{"):
            continue
        document = json.loads(line)
        if "lvl" not in document:
            documents.append(document)
    return documents


def test_check_ok(imap_backend):
    result = runner.invoke(app, ["check", *ACCOUNT_ARGS])

    assert result.exit_code == 0
    assert _payloads(result) == [{"result": "ok"}]
    assert imap_backend.credentials == ("user", "secret")


def test_check_reads_account_from_environment(imap_backend, connections):
    env = {
        "MAILSYNC_HOST": "mail.example.org",
        "MAILSYNC_PORT": "1993",
        "MAILSYNC_USERNAME": "env-user",
        "MAILSYNC_PASSWORD": "env-secret",
    }

    result = runner.invoke(app, ["check"], env=env)

    assert result.exit_code == 0
    assert connections[0][:2] == ("mail.example.org", 1993)
    assert imap_backend.credentials == ("env-user", "env-secret")


def test_check_failure_exit_code(imap_backend):
    from imapclient.exceptions import LoginError

    imap_backend.login_error = LoginError("Invalid credentials")

    result = runner.invoke(app, ["check", *ACCOUNT_ARGS])

    assert result.exit_code == 1
    assert _payloads(result) == [{"result": "wrong_password"}]


def test_folders(imap_backend):
    imap_backend.add_folder("Archive")
    imap_backend.add_folder("Archive/2022")
    imap_backend.fill("Archive/2022", 2)

    result = runner.invoke(app, ["folders", *ACCOUNT_ARGS])

    assert result.exit_code == 0
    (payload,) = _payloads(result)
    archive = next(folder for folder in payload["folders"] if folder["name"] == "Archive")
    assert archive["sub_folders"] == [{"name": "2022", "message_count": 2, "sub_folders": []}]


def test_fetch_prints_one_line_per_result(imap_backend):
    imap_backend.fill("INBOX", 3)

    result = runner.invoke(app, ["fetch", *ACCOUNT_ARGS, "--chunk-size", "2", "--message-ids"])

    assert result.exit_code == 0
    payloads = _payloads(result)
    assert [(payload["completed"], payload["chunk"]) for payload in payloads] == [(False, 2), (False, 1), (True, 0)]
    assert [email["message_id"] for email in payloads[-1]["emails"]] == [1, 2, 3]


def test_fetch_explicit_ids_with_attachments(imap_backend):
    imap_backend.append("INBOX", build_message(subject="skip"))
    imap_backend.append("INBOX", build_message(subject="keep", attachments=[("a.pdf", "application/pdf", b"%PDF")]))

    result = runner.invoke(app, ["fetch", *ACCOUNT_ARGS, "--id", "2", "--attachment-infos"])

    assert result.exit_code == 0
    (payload,) = _payloads(result)
    (email,) = payload["emails"]
    assert email["subject"] == "keep"
    assert email["attachment_infos"] == ["a.pdf (application/pdf)"]


def test_fetch_unknown_folder_fails(imap_backend):
    result = runner.invoke(app, ["fetch", *ACCOUNT_ARGS, "--folder", "Nowhere"])

    assert result.exit_code == 1
    (payload,) = _payloads(result)
    assert payload["completed"] is True
    assert "Nowhere" in payload["error"]


def test_watch_unknown_folder_fails(imap_backend):
    result = runner.invoke(app, ["watch", *ACCOUNT_ARGS, "--folder", "Nowhere"])

    assert result.exit_code == 1


def test_invalid_config_path_fails(imap_backend, tmp_path):
    result = runner.invoke(app, ["--config", str(tmp_path / "missing.yaml"), "check", *ACCOUNT_ARGS])

    assert result.exit_code == 1
