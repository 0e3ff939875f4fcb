"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime


@dataclass(slots=True)
class Address:
    """Email address with an optional display name."""

    email: str
    name: str | None = None

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email


@dataclass(slots=True)
class Attachment:
    """Downloadable part of a message."""

    blob_id: str
    name: str
    mime_type: str
    size: int


@dataclass(slots=True)
class UploadedBlob:
    """Result of uploading binary content for later attachment."""

    blob_id: str
    name: str
    mime_type: str
    size: int


@dataclass(slots=True)
class Mailbox:
    """Snapshot of a server-side mailbox."""

    id: str
    name: str
    role: str | None
    total_emails: int
    unread_emails: int
    parent_id: str | None


@dataclass(slots=True)
class Identity:
    """Address the account is allowed to send as."""

    id: str
    email: str
    name: str


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Message:
    """Normalized email representation built from a JMAP ``Email`` record."""

    id: str
    blob_id: str
    thread_id: str
    mailbox_ids: dict[str, bool]
    keywords: dict[str, bool]
    received_at: datetime
    subject: str
    sender: list[Address]
    to: list[Address]
    cc: list[Address]
    preview: str
    has_attachment: bool
    size: int
    text_body: str | None = None
    html_body: str | None = None
    has_calendar: bool = False
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def is_unread(self) -> bool:
        return "$seen" not in self.keywords

    @property
    def is_flagged(self) -> bool:
        return "$flagged" in self.keywords


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class OutgoingSubmission:
    """Message to be created as a draft and submitted for delivery.

    ``html_body`` and ``calendar_ics`` are mutually exclusive; a calendar
    reply is always sent as plain text plus the ``text/calendar`` part.
    """

    to: list[str]
    cc: list[str]
    subject: str
    text_body: str
    bcc: list[str] | None = None
    html_body: str | None = None
    calendar_ics: str | None = None
    in_reply_to: str | None = None
    references: list[str] | None = None
    attachments: list[Attachment] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.html_body is not None and self.calendar_ics is not None:
            raise ValueError("html_body and calendar_ics are mutually exclusive")


@dataclass(frozen=True, slots=True)
class Attendee:
    """Participant listed on a calendar event."""

    email: str
    name: str | None
    status: str


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class CalendarEvent:
    """Single ``VEVENT`` extracted from an iCalendar document."""

    uid: str
    summary: str
    dtstart: datetime
    dtend: datetime | None
    location: str | None
    description: str | None
    organizer_email: str
    organizer_name: str | None
    attendees: tuple[Attendee, ...]
    sequence: int
    method: str
    raw_ics: str


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class ParsedQuery:
    """Structured form of a user search string."""

    from_: tuple[str, ...] = ()
    to: tuple[str, ...] = ()
    subject: tuple[str, ...] = ()
    has_attachment: bool = False
    is_unread: bool | None = None
    is_flagged: bool | None = None
    before: date | None = None
    after: date | None = None
    text: str = ""

    def is_empty(self) -> bool:
        return (
            not self.from_
            and not self.to
            and not self.subject
            and not self.has_attachment
            and self.is_unread is None
            and self.is_flagged is None
            and self.before is None
            and self.after is None
            and not self.text
        )


__all__ = [
    "Address",
    "Attachment",
    "Attendee",
    "CalendarEvent",
    "Identity",
    "Mailbox",
    "Message",
    "OutgoingSubmission",
    "ParsedQuery",
    "UploadedBlob",
]
