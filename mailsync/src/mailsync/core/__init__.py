"""Aggregated exports for the MailSync retrieval core.

What:
  Provide a light-weight package facade over the domain model, the error
  taxonomy, the content extractor, the retrieval strategies, and the change
  watcher.

Why:
  The retrieval and watch modules depend on the IMAP layer, which itself
  imports the domain model from this package. Resolving names lazily keeps
  ``import mailsync.core.models`` free of that cycle.

How:
  Defines ``__all__`` explicitly and implements ``__getattr__`` to import the
  owning submodule on first access.

Interfaces:
  ``Email``, ``FetchOptions``, ``FetchResult``, ``MailAccount``, ``MailFolder``,
  ``ContentExtractor``, ``Retriever``, ``EmailMapper``, ``ChangeWatcher`` and
  the error classes.
"""

from __future__ import annotations

from typing import Any

_MODELS = {
    "Attachment",
    "AttachmentInfo",
    "ChangeType",
    "ChangeWatchHandle",
    "CheckCredentialsResult",
    "Email",
    "EmailBodyInfo",
    "FetchOptions",
    "FetchResult",
    "GetMailFoldersResult",
    "MailAccount",
    "MailFolder",
    "WatchOptions",
}
_ERRORS = {
    "ConnectError",
    "ConnectFailure",
    "FetchError",
    "FolderError",
    "FolderErrorType",
    "MailSyncError",
    "MappingError",
}

__all__ = sorted(_MODELS | _ERRORS) + [
    "ContentExtractor",
    "EmailMapper",
    "Retriever",
    "ChangeWatcher",
]


def __getattr__(name: str) -> Any:
    """Import the submodule that owns ``name`` and return the attribute.

    Raises:
      AttributeError: If ``name`` is not part of the public surface.
    """

    if name in _MODELS:
        from . import models

        return getattr(models, name)
    if name in _ERRORS:
        from . import errors

        return getattr(errors, name)
    if name == "ContentExtractor":
        from . import extract

        return extract.ContentExtractor
    if name in {"EmailMapper", "Retriever"}:
        from . import retrieval

        return getattr(retrieval, name)
    if name == "ChangeWatcher":
        from . import watch

        return watch.ChangeWatcher
    raise AttributeError(name)
