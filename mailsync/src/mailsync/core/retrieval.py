"""Retrieval strategies turning a folder's messages into :class:`Email` results.

What:
  Select one of four retrieval modes for a :class:`FetchOptions` value, walk
  the folder in batched windows, map every message to an
  :class:`~mailsync.core.models.Email`, and report progress as a sequence of
  :class:`~mailsync.core.models.FetchResult` values ending in exactly one
  terminal result.

Why:
  Mailboxes range from a handful of messages to hundreds of thousands. Callers
  need both a simple "give me everything" call and a progressive mode that
  bounds memory and surfaces partial results, without either mode paying a
  network round trip per message field.

How:
  Window arithmetic lives in pure generator functions (:func:`forward_windows`,
  :func:`backward_windows`, :func:`chunked`). :class:`EmailMapper` prefetches a
  window with a single ``FETCH`` and maps each message, delegating bodies and
  attachments to :class:`~mailsync.core.extract.ContentExtractor`.
  :class:`Retriever` owns the session for the duration of one fetch and turns
  any failure into a terminal error result.

Interfaces:
  :class:`RetrievalMode`, :func:`select_mode`, :func:`forward_windows`,
  :func:`backward_windows`, :func:`chunked`, :class:`EmailMapper`,
  :class:`Retriever`.

Invariants & Safety:
  - Windows cover ``1..count`` without gaps or duplicates for any chunk size.
  - Partial results are emitted strictly in window order; the terminal result
    is emitted once, after all of them.
  - When message ids were resolved the terminal list is sorted by id.
  - In chunked modes a message that fails to map is logged and skipped; in
    single-shot modes the failure ends the fetch.
"""
from __future__ import annotations

from enum import Enum
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, TypeVar

from ..config.loader import get_runtime_config
from ..config.schema import ConnectionSettings
from ..imap.client import FetchProfile, ImapFolder, RawMessage
from ..imap.connection import close_quietly, connect_and_open_folder
from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import decode_text, format_address
from .errors import FetchError, MailSyncError, MappingError
from .extract import ContentExtractor, uses_content_path, uses_structure_path
from .models import Email, FetchOptions, FetchResult


T = TypeVar("T")

ResultCallback = Callable[[FetchResult], None]


class RetrievalMode(str, Enum):
    FROM_MESSAGE_ID = "from_message_id"
    MESSAGE_IDS = "message_ids"
    CHUNKED = "chunked"
    SINGLE_SHOT = "single_shot"


def select_mode(options: FetchOptions) -> RetrievalMode:
    """Pick the retrieval mode; earlier options take precedence."""

    if options.retrieve_from_message_id is not None:
        return RetrievalMode.FROM_MESSAGE_ID
    if options.message_ids:
        return RetrievalMode.MESSAGE_IDS
    if options.retrieve_in_chunks:
        return RetrievalMode.CHUNKED
    return RetrievalMode.SINGLE_SHOT


def forward_windows(count: int, chunk_size: int) -> Iterator[Tuple[int, int]]:
    """Yield inclusive sequence windows ``[1, c], [c+1, 2c], ...`` up to ``count``."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    for start in range(1, count + 1, chunk_size):
        yield start, min(count, start + chunk_size - 1)


def backward_windows(count: int, chunk_size: int) -> Iterator[Tuple[int, int]]:
    """Yield inclusive windows from the newest message back to the first.

    Each window ends right below the previous window's start, and the last
    window is clamped at 1, so a chunk size that does not divide ``count``
    only shortens the oldest window.
    """

    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    end = count
    while end >= 1:
        start = max(1, end - chunk_size + 1)
        yield start, end
        end = start - 1


def chunked(items: Sequence[T], chunk_size: int) -> Iterator[List[T]]:
    """Split ``items`` into consecutive lists of at most ``chunk_size`` elements."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    for index in range(0, len(items), chunk_size):
        yield list(items[index:index + chunk_size])


def fetch_profile_for(options: FetchOptions) -> FetchProfile:
    return FetchProfile(
        envelope=True,
        size=True,
        content_info=uses_structure_path(options),
        content=uses_content_path(options),
    )


class EmailMapper:
    """Turn prefetched :class:`RawMessage` handles into :class:`Email` objects.

    What:
      Builds the envelope fields, resolves UIDs when requested, and runs the
      content extractor.

    Why:
      Fetches and change watches must produce identical ``Email`` values for
      the same message and options.

    How:
      :meth:`prefetch` loads a whole window in one command; :meth:`map` then
      reads only cached fields, except for the optional UID lookup.
    """

    def __init__(self, extractor: Optional[ContentExtractor] = None, logger: Optional[JsonLogger] = None) -> None:
        self._logger = logger or get_logger("mailsync.retrieval")
        self._extractor = extractor or ContentExtractor()

    def prefetch(self, folder: ImapFolder, messages: Sequence[RawMessage], options: FetchOptions) -> None:
        folder.fetch(messages, fetch_profile_for(options))

    def map(self, message: RawMessage, options: FetchOptions) -> Email:
        """Map one message.

        Raises:
          MappingError: Wrapping whatever prevented the mapping.
        """

        try:
            email = self._from_envelope(message)
            if options.retrieve_message_ids:
                email.message_id = message.folder.get_uid(message)
            self._extractor.extract(message, email, options)
            return email
        except MailSyncError:
            raise
        except Exception as exc:
            raise MappingError(f"Could not map message {message.seq}: {exc}") from exc

    def map_all(self, messages: Sequence[RawMessage], options: FetchOptions, *, skip_failures: bool) -> List[Email]:
        """Map ``messages`` in order, optionally skipping the ones that fail."""

        emails: List[Email] = []
        for message in messages:
            try:
                emails.append(self.map(message, options))
            except MappingError as exc:
                if not skip_failures:
                    raise
                self._logger.error("Could not map message, skipping it", seq=message.seq, error=repr(exc.__cause__ or exc))
        return emails

    @staticmethod
    def _from_envelope(message: RawMessage) -> Email:
        envelope = message.envelope
        if envelope is None:
            raise MappingError(f"Message {message.seq} has no envelope")
        senders = envelope.from_ or ()
        recipients = [
            format_address(address)
            for address in (envelope.to or ()) + (envelope.cc or ()) + (envelope.bcc or ())
        ]
        return Email(
            sender=format_address(senders[0]) if senders else "",
            recipients=[recipient for recipient in recipients if recipient],
            subject=decode_text(envelope.subject),
            received_at=message.internal_date,
            sent_at=envelope.date,
            size_bytes=message.size,
        )


def sort_by_message_id(emails: List[Email]) -> List[Email]:
    """Return ``emails`` ordered by id when at least one id was resolved."""

    if not any(email.message_id is not None for email in emails):
        return emails
    return sorted(emails, key=lambda email: (email.message_id is None, email.message_id or 0))


class Retriever:
    """Run one fetch from connect to terminal result.

    What:
      Connects, opens the requested folder, executes the selected retrieval
      mode, and reports every result through a callback.

    Why:
      A fetch owns its session exclusively; keeping connect, iterate, and
      close in one object makes that lifetime impossible to leak.

    How:
      :meth:`iter_results` is a generator over the mode's results;
      :meth:`fetch` drives it inside a ``try``/``finally`` that converts any
      exception into :meth:`FetchResult.failed` and always closes the folder
      and session.
    """

    def __init__(self, mapper: Optional[EmailMapper] = None, settings: Optional[ConnectionSettings] = None) -> None:
        self._mapper = mapper or EmailMapper()
        self._settings = settings
        self._logger = get_logger("mailsync.retrieval")

    def fetch(self, options: FetchOptions, on_result: ResultCallback) -> FetchResult:
        """Execute ``options`` and return the terminal result.

        Every partial result and the terminal one are passed to ``on_result``
        in emission order. No exception escapes; failures become a terminal
        result whose ``error`` is a :class:`FetchError` chained to the cause.
        """

        session = folder = None
        try:
            session, folder = connect_and_open_folder(
                options.account,
                options.folder,
                self._settings or get_runtime_config().connection,
            )
            terminal = self._emit(self.iter_results(folder, options), on_result)
        except Exception as exc:
            self._logger.error("Fetch failed", account=str(options.account), folder=options.folder, error=repr(exc))
            error = FetchError(f"Could not fetch mails from {options.folder}: {exc}")
            error.__cause__ = exc
            terminal = FetchResult.failed(error)
            on_result(terminal)
        finally:
            close_quietly(session, folder)
        return terminal

    @staticmethod
    def _emit(results: Iterator[FetchResult], on_result: ResultCallback) -> FetchResult:
        for result in results:
            on_result(result)
            if result.completed:
                return result
        raise FetchError("Retrieval ended without a terminal result")

    def iter_results(self, folder: ImapFolder, options: FetchOptions) -> Iterator[FetchResult]:
        """Yield the partial and terminal results for an open folder."""

        mode = select_mode(options)
        self._logger.debug("Selected retrieval mode", mode=mode.value, folder=folder.full_name)
        if mode is RetrievalMode.FROM_MESSAGE_ID:
            messages = folder.get_messages_by_uid_range(options.retrieve_from_message_id)
            yield from self._iter_message_list(folder, messages, options)
        elif mode is RetrievalMode.MESSAGE_IDS:
            messages = sorted(folder.get_messages_by_uids(options.message_ids or ()), key=lambda message: message.seq)
            yield from self._iter_message_list(folder, messages, options)
        elif mode is RetrievalMode.CHUNKED:
            yield from self._iter_windows(folder, options)
        else:
            messages = folder.get_messages(1, folder.message_count)
            yield self._single_shot(folder, messages, options)

    def _single_shot(self, folder: ImapFolder, messages: List[RawMessage], options: FetchOptions) -> FetchResult:
        self._mapper.prefetch(folder, messages, options)
        emails = self._mapper.map_all(messages, options, skip_failures=False)
        return FetchResult.terminal(sort_by_message_id(emails))

    def _iter_message_list(
        self, folder: ImapFolder, messages: List[RawMessage], options: FetchOptions
    ) -> Iterator[FetchResult]:
        if not options.retrieve_in_chunks:
            yield self._single_shot(folder, messages, options)
            return
        retrieved: List[Email] = []
        for chunk in chunked(messages, options.chunk_size):
            yield self._chunk_result(folder, chunk, options, retrieved)
        yield FetchResult.terminal(sort_by_message_id(retrieved))

    def _iter_windows(self, folder: ImapFolder, options: FetchOptions) -> Iterator[FetchResult]:
        count = folder.message_count
        windows = backward_windows if options.latest_first else forward_windows
        retrieved: List[Email] = []
        for start, end in windows(count, options.chunk_size):
            yield self._chunk_result(folder, folder.get_messages(start, end), options, retrieved)
        yield FetchResult.terminal(sort_by_message_id(retrieved))

    def _chunk_result(
        self,
        folder: ImapFolder,
        messages: List[RawMessage],
        options: FetchOptions,
        retrieved: List[Email],
    ) -> FetchResult:
        self._mapper.prefetch(folder, messages, options)
        emails = self._mapper.map_all(messages, options, skip_failures=True)
        retrieved.extend(emails)
        return FetchResult.partial(retrieved, emails)
