"""Build JMAP body structures for outgoing messages.

When ``bodyStructure`` is supplied, RFC 8621 forbids ``textBody`` and
``htmlBody`` at the top level, so every shape is expressed through
``bodyStructure`` plus ``bodyValues`` keyed by part id.
"""

from __future__ import annotations

from typing import Any

from ..core.models import Attachment, OutgoingSubmission

TEXT_PART_ID = "body"
HTML_PART_ID = "html"
CALENDAR_PART_ID = "calendar"
CALENDAR_REPLY_TYPE = "text/calendar; method=REPLY"


def _attachment_part(attachment: Attachment) -> dict[str, Any]:
    return {
        "type": attachment.mime_type,
        "blobId": attachment.blob_id,
        "name": attachment.name,
        "disposition": "attachment",
        "size": attachment.size,
    }


def build_body_structure(
    submission: OutgoingSubmission,
) -> tuple[dict[str, dict[str, str]], dict[str, Any]]:
    """Return ``(bodyValues, bodyStructure)`` for ``submission``.

    Shapes: plain text alone; ``multipart/alternative`` for text + HTML;
    ``multipart/mixed`` for text + calendar reply. Attachments wrap the
    chosen shape in ``multipart/mixed``, or are appended when it already is.
    """
    if submission.calendar_ics is not None and submission.html_body is not None:
        raise ValueError("html_body and calendar_ics are mutually exclusive")

    body_values: dict[str, dict[str, str]] = {
        TEXT_PART_ID: {"value": submission.text_body}
    }
    structure: dict[str, Any]

    if submission.calendar_ics is not None:
        body_values[CALENDAR_PART_ID] = {"value": submission.calendar_ics}
        structure = {
            "type": "multipart/mixed",
            "subParts": [
                {"partId": TEXT_PART_ID, "type": "text/plain"},
                {"partId": CALENDAR_PART_ID, "type": CALENDAR_REPLY_TYPE},
            ],
        }
    elif submission.html_body is not None:
        body_values[HTML_PART_ID] = {"value": submission.html_body}
        structure = {
            "type": "multipart/alternative",
            "subParts": [
                {"partId": TEXT_PART_ID, "type": "text/plain"},
                {"partId": HTML_PART_ID, "type": "text/html"},
            ],
        }
    else:
        structure = {"type": "text/plain", "partId": TEXT_PART_ID}

    if submission.attachments:
        attachment_parts = [_attachment_part(item) for item in submission.attachments]
        if structure["type"] == "multipart/mixed":
            structure = {
                "type": "multipart/mixed",
                "subParts": [*structure["subParts"], *attachment_parts],
            }
        else:
            structure = {
                "type": "multipart/mixed",
                "subParts": [structure, *attachment_parts],
            }

    return body_values, structure


def _address_list(addresses: list[str]) -> list[dict[str, str]]:
    return [{"email": address} for address in addresses]


def build_draft_email(
    submission: OutgoingSubmission, from_addr: str, drafts_mailbox_id: str
) -> dict[str, Any]:
    """Return the ``Email/set`` create object for ``submission``."""
    body_values, body_structure = build_body_structure(submission)
    draft: dict[str, Any] = {
        "mailboxIds": {drafts_mailbox_id: True},
        "from": [{"email": from_addr}],
        "to": _address_list(submission.to),
        "subject": submission.subject,
        "bodyValues": body_values,
        "bodyStructure": body_structure,
    }
    if submission.cc:
        draft["cc"] = _address_list(submission.cc)
    if submission.bcc:
        draft["bcc"] = _address_list(submission.bcc)
    if submission.in_reply_to:
        draft["inReplyTo"] = [submission.in_reply_to]
    if submission.references:
        draft["references"] = list(submission.references)
    return draft


def envelope_recipients(submission: OutgoingSubmission) -> list[dict[str, str]]:
    """SMTP ``rcptTo`` list: every To, Cc and Bcc address."""
    recipients = [*submission.to, *submission.cc, *(submission.bcc or [])]
    return _address_list(recipients)


__all__ = [
    "CALENDAR_REPLY_TYPE",
    "build_body_structure",
    "build_draft_email",
    "envelope_recipients",
]
