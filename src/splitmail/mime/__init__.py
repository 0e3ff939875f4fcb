"""MIME body-structure interpretation and construction."""

from .compose import build_body_structure, build_draft_email, envelope_recipients
from .structure import (
    extract_body,
    find_attachments,
    find_calendar_blob_id,
    parse_addresses,
    parse_email,
)

__all__ = [
    "build_body_structure",
    "build_draft_email",
    "envelope_recipients",
    "extract_body",
    "find_attachments",
    "find_calendar_blob_id",
    "parse_addresses",
    "parse_email",
]
