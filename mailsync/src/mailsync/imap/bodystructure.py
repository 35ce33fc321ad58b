"""Owned snapshot of an IMAP ``BODYSTRUCTURE`` response.

What:
  Convert the nested tuples ``imapclient`` returns for ``BODYSTRUCTURE`` into a
  tree of :class:`BodyNode` objects with decoded, lower-cased fields.

Why:
  The structure-only extraction path needs part types, dispositions, sizes,
  and line counts without downloading content. Working on an owned snapshot
  keeps the extractor independent of protocol tuples and their positional
  layout, which differs between text, message, and other leaf parts.

How:
  :func:`parse_body_structure` recognises multipart nodes (child parts first,
  either wrapped in a list by ``imapclient.response_types.BodyData`` or inline
  as in the raw response) and single parts, then reads the extension fields at
  the offsets RFC 3501 defines for each leaf kind.

Interfaces:
  :class:`BodyNode`, :func:`parse_body_structure`.

Invariants & Safety:
  - Missing optional fields yield empty values instead of errors; servers
    omit extension data freely.
  - Recursion depth is bounded only by the message structure.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..utils.mime import decode_text


@dataclass
class BodyNode:
    """One node of a message's body structure."""

    type: str
    subtype: str
    params: Dict[str, str] = field(default_factory=dict)
    disposition: Optional[str] = None
    disposition_params: Dict[str, str] = field(default_factory=dict)
    size: int = 0
    line_count: int = -1
    children: List["BodyNode"] = field(default_factory=list)

    @property
    def content_type(self) -> str:
        return f"{self.type}/{self.subtype}"

    @property
    def is_multipart(self) -> bool:
        return bool(self.children)


def _as_str(value: Any) -> str:
    return decode_text(value).strip()


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _params(value: Any) -> Dict[str, str]:
    """Turn a flat ``(key, value, key, value)`` sequence into a dict."""

    if not isinstance(value, (list, tuple)):
        return {}
    result: Dict[str, str] = {}
    for index in range(0, len(value) - 1, 2):
        result[_as_str(value[index]).lower()] = decode_text(value[index + 1])
    return result


def _field(data: Sequence[Any], index: int) -> Any:
    return data[index] if len(data) > index else None


def _disposition(value: Any) -> tuple:
    if not isinstance(value, (list, tuple)) or not value:
        return None, {}
    return _as_str(value[0]).lower() or None, _params(_field(value, 1))


def parse_body_structure(data: Sequence[Any]) -> BodyNode:
    """Build a :class:`BodyNode` tree from an ``imapclient`` BODYSTRUCTURE value.

    What:
      Handles multipart containers and the three leaf layouts (``text/*``,
      ``message/rfc822``, everything else).

    Why:
      The positions of ``size``, ``lines`` and ``disposition`` depend on the
      leaf kind; getting them wrong silently yields bogus metadata.

    How:
      Multipart: children come first, followed by subtype, parameters and
      disposition. Leaf: ``type, subtype, params, id, description, encoding,
      size`` then kind-specific fields.

    Args:
      data: The ``BODYSTRUCTURE`` value from a fetch response.

    Returns:
      Root :class:`BodyNode` of the snapshot.
    """

    if isinstance(data[0], list):
        children_data = list(data[0])
        rest = list(data[1:])
    elif isinstance(data[0], tuple):
        count = 0
        while count < len(data) and isinstance(data[count], (list, tuple)):
            count += 1
        children_data = list(data[:count])
        rest = list(data[count:])
    else:
        children_data = []
        rest = []

    if children_data:
        disposition, disposition_params = _disposition(_field(rest, 2))
        return BodyNode(
            type="multipart",
            subtype=_as_str(_field(rest, 0)).lower(),
            params=_params(_field(rest, 1)),
            disposition=disposition,
            disposition_params=disposition_params,
            children=[parse_body_structure(child) for child in children_data],
        )

    body_type = _as_str(_field(data, 0)).lower()
    subtype = _as_str(_field(data, 1)).lower()
    size = _as_int(_field(data, 6))
    line_count = -1
    if body_type == "text":
        line_count = _as_int(_field(data, 7), -1)
        disposition_index = 9
    elif body_type == "message" and subtype == "rfc822":
        line_count = _as_int(_field(data, 9), -1)
        disposition_index = 11
    else:
        disposition_index = 8
    disposition, disposition_params = _disposition(_field(data, disposition_index))
    return BodyNode(
        type=body_type,
        subtype=subtype,
        params=_params(_field(data, 2)),
        disposition=disposition,
        disposition_params=disposition_params,
        size=size,
        line_count=line_count,
    )
