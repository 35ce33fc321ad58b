"""Pytest fixtures for unit tests requiring IMAP fakes.

What:
  Prepare the unit test environment by ensuring ``tests/unit`` is importable and
  by exposing an ``imap_backend`` fixture backed by :class:`FakeImapBackend`
  together with a matching :class:`MailAccount`.

Why:
  The connection manager, retrieval strategies, and watches all construct
  ``IMAPClient`` instances themselves. Replacing the constructor keeps tests
  off the network and message flows deterministic.

How:
  Append the unit directory to ``sys.path`` for local imports and monkeypatch
  ``mailsync.imap.client.IMAPClient`` with a factory that records the
  connection parameters and returns the shared fake backend.

Interfaces:
  :func:`imap_backend`, :func:`account`, :func:`connections` (pytest fixtures).

Invariants & Safety:
  - Each test receives a fresh backend instance to eliminate state leakage.
"""

import sys
from pathlib import Path

import pytest

from mailsync.core.models import MailAccount

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeImapBackend


@pytest.fixture
def connections():
    """List of ``(host, port, ssl, timeout)`` tuples, one per opened client."""

    return []


@pytest.fixture
def imap_backend(monkeypatch: pytest.MonkeyPatch, connections):
    """Return the fake backend every new ``IMAPClient`` resolves to."""

    backend = FakeImapBackend()

    def factory(host, port=993, ssl=True, use_uid=True, timeout=None):
        connections.append((host, port, ssl, timeout))
        backend.use_uid = use_uid
        return backend

    monkeypatch.setattr("mailsync.imap.client.IMAPClient", factory)
    return backend


@pytest.fixture
def account() -> MailAccount:
    return MailAccount("user@example.com", "secret", "imap.example.com", 993)
