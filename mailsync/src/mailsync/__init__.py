"""
Module: mailsync.__init__

What:
  Aggregate package exports for the MailSync IMAP retrieval engine and expose
  the primary namespace segments (configuration, core logic, IMAP handling,
  and utilities).

Why:
  Importers rely on these names to build fetchers, load configuration, and
  wire the CLI without touching private modules.

How:
  Provide an explicit ``__all__`` declaration that enumerates the public
  subpackages and the :mod:`mailsync.fetcher` façade.

Interfaces:
  - config: Runtime configuration schema and loader.
  - core: Domain model, extraction, retrieval strategies, and change watches.
  - imap: ``imapclient`` session wrappers and connection management.
  - utils: Structured logging and MIME helpers.
  - fetcher: :class:`~mailsync.fetcher.EmailFetcher`, the public entry point.
"""

__all__ = [
    "config",
    "core",
    "fetcher",
    "imap",
    "utils",
]
