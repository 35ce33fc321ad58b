"""Domain value types exchanged between the engine and its callers.

What:
  Plain dataclasses and enums describing accounts, folders, messages, fetch
  options, and fetch results.

Why:
  Keeping the domain free of ``imapclient`` types means callers never hold a
  reference into a live connection, and the structures can be logged, pickled,
  or serialised as they are.

Invariants:
  - ``Email.message_id`` is only set when ``FetchOptions.retrieve_message_ids``
    was requested.
  - ``Attachment`` objects exist only when attachment download was requested;
    info-only fetches populate ``attachment_infos`` exclusively.
  - A fetch emits zero or more partial ``FetchResult`` values followed by
    exactly one terminal one.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

from .errors import ConnectFailure


@dataclass(frozen=True)
class MailAccount:
    """Credential and endpoint bundle for one IMAP account."""

    username: str
    password: str = field(repr=False)
    server_address: str
    server_port: int = 993

    def __str__(self) -> str:
        return f"{self.username}@{self.server_address}:{self.server_port}"


@dataclass(frozen=True)
class MailFolder:
    """Snapshot of one server folder and its subfolders."""

    name: str
    message_count: int
    sub_folders: List["MailFolder"] = field(default_factory=list)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class AttachmentInfo:
    """Attachment descriptor without content."""

    file_name: str
    size_bytes: int
    mime_type: str

    def __str__(self) -> str:
        return f"{self.file_name} ({self.mime_type})"


@dataclass(frozen=True)
class Attachment(AttachmentInfo):
    """Attachment descriptor including its decoded content."""

    content: bytes = field(repr=False)


@dataclass(frozen=True)
class EmailBodyInfo:
    """Size metadata for a body part whose content was not requested."""

    size_bytes: int
    line_count: int


@dataclass
class Email:
    """A message as materialised by the retrieval strategies.

    Instances are built incrementally by the content extractor and are treated
    as immutable once handed to the caller.
    """

    sender: str
    recipients: List[str]
    subject: str
    received_at: Optional[datetime]
    sent_at: Optional[datetime] = None
    message_id: Optional[int] = None
    size_bytes: Optional[int] = None
    # Only set when bodies or body structure were loaded anyway.
    content_type: Optional[str] = None
    plain_text_body_info: Optional[EmailBodyInfo] = None
    plain_text_body: Optional[str] = field(default=None, repr=False)
    html_body_info: Optional[EmailBodyInfo] = None
    html_body: Optional[str] = field(default=None, repr=False)
    attachment_infos: List[AttachmentInfo] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def body(self) -> Optional[str]:
        """Plain text body if present, else the HTML body, else ``None``."""

        if self.plain_text_body is not None:
            return self.plain_text_body
        return self.html_body

    def add_attachment_info(self, info: AttachmentInfo) -> None:
        self.attachment_infos.append(info)

    def add_attachment(self, attachment: Attachment) -> None:
        self.attachments.append(attachment)

    def __str__(self) -> str:
        date = self.received_at.strftime("%Y-%m-%d") if self.received_at else "?"
        count = len(self.attachment_infos) or len(self.attachments)
        return f"{date} {self.sender}: {self.subject} ({count} attachments)"


@dataclass
class FetchOptions:
    """Describe what a fetch retrieves and how results are chunked.

    The retrieval mode is chosen in priority order: ``retrieve_from_message_id``,
    then a non-empty ``message_ids`` list, then a chunked or single-shot full
    scan depending on ``chunk_size``. The boolean toggles compose freely.
    """

    account: MailAccount
    folder: str = "inbox"
    retrieve_message_ids: bool = False
    retrieve_plain_text_bodies: bool = False
    retrieve_html_bodies: bool = False
    retrieve_attachment_infos: bool = False
    download_attachments: bool = False
    chunk_size: int = -1
    retrieve_from_message_id: Optional[int] = None
    message_ids: Optional[Sequence[int]] = None
    latest_first: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.account, MailAccount):
            raise ValueError("FetchOptions.account must be a MailAccount")
        if not self.folder or not self.folder.strip():
            raise ValueError("FetchOptions.folder must not be blank")
        if self.retrieve_from_message_id is not None and not isinstance(self.retrieve_from_message_id, int):
            raise ValueError("retrieve_from_message_id must be an int")
        if self.message_ids is not None:
            ids = list(self.message_ids)
            if any(not isinstance(uid, int) for uid in ids):
                raise ValueError("message_ids must contain ints")
            self.message_ids = ids

    @property
    def retrieve_in_chunks(self) -> bool:
        return self.chunk_size > 0

    @property
    def retrieve_bodies(self) -> bool:
        return self.retrieve_plain_text_bodies or self.retrieve_html_bodies


@dataclass
class FetchResult:
    """One progressive or terminal result of a fetch."""

    completed: bool
    all_retrieved_so_far: List[Email] = field(default_factory=list)
    latest_chunk: List[Email] = field(default_factory=list)
    error: Optional[Exception] = None

    @classmethod
    def partial(cls, all_retrieved: List[Email], chunk: List[Email]) -> "FetchResult":
        return cls(False, list(all_retrieved), list(chunk))

    @classmethod
    def terminal(cls, all_retrieved: List[Email]) -> "FetchResult":
        return cls(True, list(all_retrieved))

    @classmethod
    def failed(cls, error: Exception) -> "FetchResult":
        return cls(True, [], [], error)

    @property
    def successful(self) -> bool:
        return self.error is None

    def __str__(self) -> str:
        return f"Completed? {self.completed} {len(self.all_retrieved_so_far)} retrieved, error = {self.error}"


class CheckCredentialsResult(str, Enum):
    """Outcome of a credential check."""

    OK = "ok"
    WRONG_USERNAME = ConnectFailure.WRONG_USERNAME.value
    WRONG_PASSWORD = ConnectFailure.WRONG_PASSWORD.value
    INVALID_SERVER_ADDRESS = ConnectFailure.INVALID_SERVER_ADDRESS.value
    INVALID_SERVER_PORT = ConnectFailure.INVALID_SERVER_PORT.value
    UNKNOWN_ERROR = ConnectFailure.UNKNOWN_ERROR.value

    @classmethod
    def from_failure(cls, failure: ConnectFailure) -> "CheckCredentialsResult":
        return cls(failure.value)


@dataclass
class GetMailFoldersResult:
    successful: bool
    folders: List[MailFolder] = field(default_factory=list)
    error: Optional[Exception] = None


class ChangeType(str, Enum):
    """Kind of change reported by a watch."""

    ADDED = "added"
    DELETED = "deleted"
    MODIFIED = "modified"


@dataclass(frozen=True)
class WatchOptions:
    account: MailAccount
    folder: str = "inbox"

    def __str__(self) -> str:
        return f"{self.account.server_address} {self.folder}"


@dataclass(frozen=True)
class ChangeWatchHandle:
    """Opaque handle identifying one live watch; only used to cancel it."""

    watch_id: str
    account: MailAccount
    folder: str

    def __str__(self) -> str:
        return f"{self.account.server_address} {self.account.username} {self.folder}"
