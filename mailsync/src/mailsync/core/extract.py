"""Body and attachment extraction from a message's MIME tree.

What:
  Populate the body text, body metadata, and attachment fields of an
  :class:`~mailsync.core.models.Email` from a
  :class:`~mailsync.imap.client.RawMessage`, according to the toggles of a
  :class:`~mailsync.core.models.FetchOptions`.

Why:
  Two very different costs hide behind "tell me about the attachments". Names,
  sizes, and types are available from the server's body structure without
  transferring a single part, whereas body text and attachment content need
  the message source. Choosing the path per request keeps metadata-only
  fetches cheap.

How:
  The structure-only path walks a :class:`~mailsync.imap.bodystructure.BodyNode`
  snapshot. The content path parses the message source with the ``email``
  package, snapshots it into :class:`MimeNode` objects tagged with a
  :class:`PartKind`, and walks that tree recursively, tracking the message's
  effective content type on the way down.

Interfaces:
  :class:`ContentExtractor`, :class:`PartKind`, :class:`MimeNode`,
  :func:`build_mime_tree`, :func:`uses_structure_path`,
  :func:`uses_content_path`.

Invariants & Safety:
  - Info-only extraction never creates :class:`Attachment` objects.
  - A missing attachment file name is logged and replaced, never fatal.
  - Failing to read the body structure leaves the email without body or
    attachment metadata instead of failing the message.
  - Nested multiparts recurse without an artificial depth limit; an attached
    ``message/rfc822`` part is an attachment leaf, not a container.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import collapse_rfc2231_value, decode_params
from enum import Enum
from typing import Dict, List, Optional

from ..imap.bodystructure import BodyNode
from ..imap.client import RawMessage
from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import extract_content_type, parse_message
from .models import Attachment, AttachmentInfo, Email, EmailBodyInfo, FetchOptions


class PartKind(str, Enum):
    MULTIPART = "multipart"
    TEXT = "text"
    ATTACHMENT = "attachment"
    OTHER = "other"


@dataclass
class MimeNode:
    """Snapshot of one MIME part of a parsed message.

    ``index`` is the part's position inside its parent container and is used
    to name attachments that carry no file name.
    """

    kind: PartKind
    content_type: str
    index: int
    file_name: Optional[str] = None
    children: List["MimeNode"] = field(default_factory=list)
    part: Optional[EmailMessage] = field(default=None, repr=False)

    @property
    def subtype(self) -> str:
        return self.content_type.partition("/")[2]

    @property
    def encoded_size(self) -> int:
        """Size of the part's transfer-encoded payload, as servers report it."""

        if self.part is None:
            return 0
        if self._is_message():
            return len(self.payload())
        payload = self.part.get_payload()
        return len(payload) if isinstance(payload, (str, bytes)) else 0

    def text(self) -> str:
        """Decode a text part, falling back to UTF-8 for unknown charsets."""

        if self.part is None:
            return ""
        try:
            content = self.part.get_content()
        except (LookupError, UnicodeError):
            raw = self.part.get_payload(decode=True) or b""
            return raw.decode("utf-8", errors="replace")
        if isinstance(content, bytes):
            return content.decode(self.part.get_content_charset("utf-8"), errors="replace")
        return str(content)

    def payload(self) -> bytes:
        """Return the decoded content of the part."""

        if self.part is None:
            return b""
        if self._is_message():
            # Attached messages are returned as their full source.
            return b"".join(inner.as_bytes() for inner in self.part.get_payload())
        return self.part.get_payload(decode=True) or b""

    def _is_message(self) -> bool:
        if self.part is None or self.part.get_content_maintype() != "message":
            return False
        return isinstance(self.part.get_payload(), list)


def _classify(part: EmailMessage, content_type: str) -> PartKind:
    if content_type.startswith("multipart/"):
        return PartKind.MULTIPART
    if part.get_content_disposition() == "attachment":
        return PartKind.ATTACHMENT
    if content_type.startswith("text/"):
        return PartKind.TEXT
    return PartKind.OTHER


def build_mime_tree(part: EmailMessage, index: int = 0) -> MimeNode:
    """Snapshot ``part`` and its descendants into :class:`MimeNode` objects.

    A part is an attachment only when its disposition says so explicitly;
    text parts without that disposition are bodies, and inline non-text parts
    (embedded images, for example) are classified as other.
    """

    content_type = extract_content_type(part.get("Content-Type")) or part.get_content_type()
    kind = _classify(part, content_type)
    node = MimeNode(kind=kind, content_type=content_type, index=index, part=part)
    if kind is PartKind.MULTIPART:
        node.children = [
            build_mime_tree(child, child_index)
            for child_index, child in enumerate(part.iter_parts())
        ]
    elif kind is PartKind.ATTACHMENT:
        node.file_name = part.get_filename() or None
    return node


def uses_structure_path(options: FetchOptions) -> bool:
    """Attachment metadata only: no bodies and no downloads requested."""

    return (
        options.retrieve_attachment_infos
        and not options.retrieve_bodies
        and not options.download_attachments
    )


def uses_content_path(options: FetchOptions) -> bool:
    return options.retrieve_bodies or options.download_attachments


def _param(params: Dict[str, str], key: str) -> Optional[str]:
    """Return parameter ``key``, joining and decoding RFC 2231 ``key*`` forms.

    Continuations (``filename*0*``, ``filename*1*``) are reassembled by
    :func:`email.utils.decode_params`; unknown charsets decode with
    replacement characters.
    """

    if params.get(key):
        return params[key]
    pieces = [(name, value) for name, value in params.items() if name.startswith(f"{key}*")]
    if not pieces:
        return None
    for name, value in decode_params([("", "")] + pieces)[1:]:
        if name == key:
            return collapse_rfc2231_value(value) or None
    return None


class ContentExtractor:
    """Fill an :class:`Email`'s body and attachment fields from a raw message.

    What:
      Dispatches to the structure-only or the content path (or both never at
      once) depending on the fetch options.

    Why:
      Retrieval strategies and change watches share the same extraction rules;
      holding them in one object keeps their results identical.

    How:
      :meth:`extract` checks :func:`uses_structure_path` and
      :func:`uses_content_path`, then walks the corresponding tree.
    """

    def __init__(self, logger: Optional[JsonLogger] = None) -> None:
        self._logger = logger or get_logger("mailsync.extract")

    def extract(self, message: RawMessage, email: Email, options: FetchOptions) -> None:
        if uses_structure_path(options):
            self.extract_from_structure(message, email)
        if uses_content_path(options):
            self.extract_from_content(message, email, options)

    # Structure-only path -------------------------------------------------
    def extract_from_structure(self, message: RawMessage, email: Email) -> None:
        """Record attachment infos and body infos from the body structure.

        What:
          Reads the cached body structure (or fetches only the structure) and
          records :class:`AttachmentInfo` and :class:`EmailBodyInfo` values.

        Why:
          No part content crosses the wire on this path, which is what makes
          listing attachments of a whole mailbox affordable.

        How:
          Any failure to obtain or interpret the structure is logged and
          leaves ``email`` without body or attachment metadata.
        """

        try:
            structure = message.structure()
            if structure is None:
                return
            self._walk_structure(structure, email)
            email.content_type = structure.content_type
        except Exception as exc:  # structure access is best-effort
            email.attachment_infos = []
            email.plain_text_body_info = None
            email.html_body_info = None
            self._logger.error("Could not read message's body structure", seq=message.seq, error=repr(exc))

    def _walk_structure(self, node: BodyNode, email: Email) -> None:
        if node.children:
            for child in node.children:
                self._walk_structure(child, email)
        elif node.disposition == "attachment":
            name = _param(node.disposition_params, "filename") or _param(node.params, "name") or ""
            email.add_attachment_info(AttachmentInfo(name, node.size, node.content_type))
        elif node.type == "text":
            info = EmailBodyInfo(node.size, node.line_count)
            if node.subtype == "plain":
                email.plain_text_body_info = info
            elif node.subtype == "html":
                email.html_body_info = info

    # Content path ------------------------------------------------------
    def extract_from_content(self, message: RawMessage, email: Email, options: FetchOptions) -> None:
        """Set bodies and attachments by walking the parsed message.

        What:
          Parses the message source and applies the requested toggles to each
          text and attachment leaf.

        Why:
          Bodies and attachment content only exist in the message source.

        How:
          The effective content type starts as the message's own type and is
          refined while walking: an HTML body makes it ``text/html``; a plain
          body makes it ``text/plain`` only while it is still a multipart type.
        """

        parsed = parse_message(message.content())
        root = build_mime_tree(parsed)
        email.content_type = root.content_type
        self._walk_content(root, email, options)

    def _walk_content(self, node: MimeNode, email: Email, options: FetchOptions) -> None:
        if node.kind is PartKind.MULTIPART:
            for child in node.children:
                self._walk_content(child, email, options)
        elif node.kind is PartKind.TEXT:
            if options.retrieve_bodies:
                self._set_text_body(node, email, options)
        elif node.kind is PartKind.ATTACHMENT:
            if options.retrieve_attachment_infos or options.download_attachments:
                self._add_attachment(node, email, options)
        else:
            self._logger.debug("Cannot map message content type", content_type=node.content_type)

    def _set_text_body(self, node: MimeNode, email: Email, options: FetchOptions) -> None:
        if node.subtype == "plain":
            if options.retrieve_plain_text_bodies:
                email.plain_text_body = node.text()
                if (email.content_type or "").startswith("multipart"):
                    email.content_type = "text/plain"
        elif node.subtype == "html":
            if options.retrieve_html_bodies:
                email.html_body = node.text()
                email.content_type = "text/html"

    def _add_attachment(self, node: MimeNode, email: Email, options: FetchOptions) -> None:
        file_name = node.file_name or f"Attachment_{node.index + 1}"
        if options.retrieve_attachment_infos:
            email.add_attachment_info(AttachmentInfo(file_name, node.encoded_size, node.content_type))
        if options.download_attachments:
            content = node.payload()
            email.add_attachment(Attachment(file_name, len(content), node.content_type, content))
        if not node.file_name:
            self._logger.warning(
                "Attachment part has no file name",
                file_name=file_name,
                content_type=node.content_type,
                email=str(email),
            )
