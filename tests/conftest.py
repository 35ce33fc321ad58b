"""Pytest configuration shared by all MailSync suites.

What:
  Establish project import paths and define fixtures that apply a canned runtime
  configuration to every test.

Why:
  Tests import the ``mailsync`` package from the source tree rather than an
  installed wheel, so the ``mailsync/src`` directory is prepended to
  ``sys.path``. The autouse fixture keeps configuration state deterministic
  between tests; the canned file shortens the IDLE cycle so watch tests finish
  quickly.

How:
  Compute the project root relative to the file, inject the source directory into
  ``sys.path`` when available, and define :func:`runtime_config` to manage the
  ``MAILSYNC_CONFIG_PATH`` environment variable while resetting the shared runtime
  cache before and after each test.

Interfaces:
  :func:`runtime_config` (pytest fixture).
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "mailsync" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest

from mailsync.config.loader import reset_runtime_config

CONFIG_PATH = Path(__file__).resolve().parent / "data" / "config.yaml"


@pytest.fixture(autouse=True)
def runtime_config(monkeypatch: pytest.MonkeyPatch):
    """Apply the canned configuration file for every test.

    What:
      Sets ``MAILSYNC_CONFIG_PATH`` to the repository fixture and clears the
      runtime configuration cache before and after each test.

    Why:
      MailSync stores configuration globally. Without explicit resets, tests
      could interfere with each other or depend on execution order.
    """

    monkeypatch.setenv("MAILSYNC_CONFIG_PATH", str(CONFIG_PATH))
    reset_runtime_config()
    try:
        yield
    finally:
        reset_runtime_config()
