"""Test package marker for the mailsync suite.

What:
  Marks ``tests`` as a package so the shared ``conftest`` is imported under a
  stable module name.

Invariants & Safety:
  - Importing ``tests`` has no side effects; path and config setup live in
    ``conftest.py``.
"""
