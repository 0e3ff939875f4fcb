"""Interpret JMAP ``Email`` records and their body-structure trees."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from ..core.datetime_utils import parse_rfc3339
from ..core.models import Address, Attachment, Message

LOGGER = logging.getLogger(__name__)

BODY_CONTENT_TYPES = frozenset({"text/plain", "text/html", "text/calendar"})
DEFAULT_ATTACHMENT_NAME = "attachment"


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _as_int(value: Any) -> int:
    # bool is an int subclass; a JSON true is not a size.
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _flag_map(value: Any) -> dict[str, bool]:
    return {
        key: flag if isinstance(flag, bool) else True
        for key, flag in _as_dict(value).items()
    }


def extract_body(item: Mapping[str, Any], key: str) -> str | None:
    """Join the values of every part listed under ``key`` with newlines.

    ``key`` is ``"textBody"`` or ``"htmlBody"``; part ids are resolved
    through ``bodyValues``. Returns ``None`` when no part has a value.
    """
    body_values = _as_dict(item.get("bodyValues"))
    chunks = []
    for part in _as_list(item.get(key)):
        part_id = _as_str(_as_dict(part).get("partId"))
        value = _as_dict(body_values.get(part_id)).get("value")
        if isinstance(value, str):
            chunks.append(value)
    if not chunks:
        return None
    return "\n".join(chunks)


def find_attachments(body_structure: Any) -> list[Attachment]:
    """List downloadable attachments in document order."""
    attachments: list[Attachment] = []
    _collect_attachments(body_structure, False, attachments)
    return attachments


def _collect_attachments(part: Any, in_related: bool, out: list[Attachment]) -> None:
    if not isinstance(part, dict):
        return

    mime_type = _as_str(part.get("type"))

    # Leaves come back with "subParts": [], so only a non-empty list is a
    # container. Related scoping applies to direct children only.
    sub_parts = _as_list(part.get("subParts"))
    if sub_parts:
        child_in_related = mime_type.lower() == "multipart/related"
        for sub_part in sub_parts:
            _collect_attachments(sub_part, child_in_related, out)
        return

    if mime_type.lower() in BODY_CONTENT_TYPES:
        return

    disposition = _as_str(part.get("disposition")).lower()
    name = _as_str(part.get("name"))

    # Inline parts of multipart/related are images embedded in the HTML.
    if disposition == "inline" and in_related:
        return

    if disposition not in ("attachment", "inline") and not name:
        return

    blob_id = part.get("blobId")
    if not isinstance(blob_id, str):
        return

    out.append(
        Attachment(
            blob_id=blob_id,
            name=name or DEFAULT_ATTACHMENT_NAME,
            mime_type=mime_type.lower(),
            size=_as_int(part.get("size")),
        )
    )


def find_calendar_blob_id(body_structure: Any) -> str | None:
    """Return the blob id of the first calendar part, depth first."""
    if not isinstance(body_structure, dict):
        return None

    mime_type = _as_str(body_structure.get("type")).lower()
    filename = _as_str(body_structure.get("name")).lower()
    if mime_type == "text/calendar" or filename.endswith(".ics"):
        blob_id = body_structure.get("blobId")
        return blob_id if isinstance(blob_id, str) else None

    for sub_part in _as_list(body_structure.get("subParts")):
        blob_id = find_calendar_blob_id(sub_part)
        if blob_id is not None:
            return blob_id
    return None


def parse_addresses(value: Any) -> list[Address]:
    """Convert a JMAP ``EmailAddress[]`` into :class:`Address` objects."""
    addresses = []
    for entry in _as_list(value):
        entry = _as_dict(entry)
        name = entry.get("name")
        addresses.append(
            Address(
                email=_as_str(entry.get("email")),
                name=name if isinstance(name, str) and name else None,
            )
        )
    return addresses


def parse_email(item: Mapping[str, Any], fetch_body: bool) -> Message:
    """Map one ``Email/get`` record onto a :class:`Message`."""
    received_at = parse_rfc3339(item.get("receivedAt"))
    if received_at is None:
        LOGGER.debug(
            "Email %s has no usable receivedAt; using current time", item.get("id")
        )
        received_at = datetime.now(tz=UTC)

    text_body = None
    html_body = None
    has_calendar = False
    attachments: list[Attachment] = []
    if fetch_body:
        body_structure = item.get("bodyStructure")
        text_body = extract_body(item, "textBody")
        html_body = extract_body(item, "htmlBody")
        has_calendar = find_calendar_blob_id(body_structure) is not None
        attachments = find_attachments(body_structure)

    has_attachment = item.get("hasAttachment")

    return Message(
        id=_as_str(item.get("id")),
        blob_id=_as_str(item.get("blobId")),
        thread_id=_as_str(item.get("threadId")),
        mailbox_ids=_flag_map(item.get("mailboxIds")),
        keywords=_flag_map(item.get("keywords")),
        received_at=received_at,
        subject=_as_str(item.get("subject")),
        sender=parse_addresses(item.get("from")),
        to=parse_addresses(item.get("to")),
        cc=parse_addresses(item.get("cc")),
        preview=_as_str(item.get("preview")),
        has_attachment=has_attachment if isinstance(has_attachment, bool) else False,
        size=_as_int(item.get("size")),
        text_body=text_body,
        html_body=html_body,
        has_calendar=has_calendar,
        attachments=attachments,
    )


__all__ = [
    "BODY_CONTENT_TYPES",
    "extract_body",
    "find_attachments",
    "find_calendar_blob_id",
    "parse_addresses",
    "parse_email",
]
