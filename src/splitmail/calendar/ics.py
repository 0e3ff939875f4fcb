"""Minimal iCalendar (RFC 5545) reader and iTIP reply writer.

Only the properties the mail client needs are understood: ``UID``,
``SUMMARY``, ``DTSTART``/``DTEND``, ``LOCATION``, ``DESCRIPTION``,
``SEQUENCE``, ``METHOD``, ``ORGANIZER`` and ``ATTENDEE`` (with ``CN`` and
``PARTSTAT``). Times carrying a ``TZID`` are read as UTC.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import Enum

from ..core.datetime_utils import format_ics_datetime
from ..core.models import Attendee, CalendarEvent

LOGGER = logging.getLogger(__name__)

PRODID = "-//splitmail//EN"
DEFAULT_PARTSTAT = "NEEDS-ACTION"
_FOLD_WIDTH = 75


class RsvpStatus(str, Enum):
    """Participation statuses a user can answer an invitation with."""

    ACCEPTED = "ACCEPTED"
    TENTATIVE = "TENTATIVE"
    DECLINED = "DECLINED"

    @classmethod
    def parse(cls, value: str) -> RsvpStatus:
        """Accept ``accepted``/``tentative``/``declined`` in any case."""
        normalized = value.strip().upper()
        if normalized == "MAYBE":
            return cls.TENTATIVE
        return cls(normalized)


# Parsing ---------------------------------------------------------------------
def parse_ics(data: str) -> CalendarEvent | None:
    """Parse the first ``VEVENT`` of ``data``; return ``None`` if unusable."""
    data = data.strip()
    if "BEGIN:VCALENDAR" not in data:
        return None

    method = _extract_property(data, "METHOD") or "REQUEST"

    start = data.find("BEGIN:VEVENT")
    if start == -1:
        return None
    end = data.find("END:VEVENT", start)
    if end == -1:
        return None
    vevent = unfold_lines(data[start : end + len("END:VEVENT")])

    uid = _extract_property(vevent, "UID")
    if uid is None:
        return None
    dtstart = _parse_datetime_property(vevent, "DTSTART")
    if dtstart is None:
        LOGGER.debug("Calendar event %s has no usable DTSTART", uid)
        return None

    sequence_raw = _extract_property(vevent, "SEQUENCE")
    try:
        sequence = int(sequence_raw) if sequence_raw is not None else 0
    except ValueError:
        sequence = 0

    organizer_email, organizer_name = _parse_organizer(vevent)

    return CalendarEvent(
        uid=uid,
        summary=_extract_property(vevent, "SUMMARY") or "",
        dtstart=dtstart,
        dtend=_parse_datetime_property(vevent, "DTEND"),
        location=_extract_property(vevent, "LOCATION"),
        description=_extract_property(vevent, "DESCRIPTION"),
        organizer_email=organizer_email,
        organizer_name=organizer_name,
        attendees=tuple(_parse_attendees(vevent)),
        sequence=sequence,
        method=method,
        raw_ics=data,
    )


def unfold_lines(text: str) -> str:
    """Join continuation lines (CRLF or LF followed by a space or tab)."""
    for fold in ("\r\n ", "\r\n\t", "\n ", "\n\t"):
        text = text.replace(fold, "")
    return text


def _content_lines(text: str) -> list[str]:
    return [line.rstrip("\r") for line in text.split("\n")]


def _property_value(line: str, name: str) -> tuple[str, str] | None:
    """Return ``(params, value)`` when ``line`` is property ``name``."""
    if not line.startswith(name):
        return None
    rest = line[len(name) :]
    if rest.startswith(":"):
        return "", rest[1:]
    if rest.startswith(";"):
        colon = _find_unquoted(rest, ":")
        if colon == -1:
            return None
        return rest[:colon], rest[colon + 1 :]
    return None


def _find_unquoted(text: str, char: str) -> int:
    quoted = False
    for index, current in enumerate(text):
        if current == '"':
            quoted = not quoted
        elif current == char and not quoted:
            return index
    return -1


def _extract_property(text: str, name: str) -> str | None:
    for line in _content_lines(text):
        match = _property_value(line, name)
        if match is not None:
            return match[1]
    return None


def _parse_datetime_property(text: str, name: str) -> datetime | None:
    for line in _content_lines(text):
        match = _property_value(line, name)
        if match is None:
            continue
        params, value = match
        value = value.strip()
        date_only = (
            "VALUE=DATE" in params and "VALUE=DATE-TIME" not in params
        ) or len(value) == 8
        try:
            if date_only:
                parsed = datetime.strptime(value, "%Y%m%d")
            else:
                parsed = datetime.strptime(value.removesuffix("Z"), "%Y%m%dT%H%M%S")
        except ValueError:
            return None
        return parsed.replace(tzinfo=UTC)
    return None


def _parse_organizer(text: str) -> tuple[str, str | None]:
    for line in _content_lines(text):
        if line.startswith("ORGANIZER"):
            return _extract_mailto(line), _extract_param(line, "CN")
    return "", None


def _parse_attendees(text: str) -> list[Attendee]:
    attendees = []
    for line in _content_lines(text):
        if not line.startswith("ATTENDEE"):
            continue
        email = _extract_mailto(line)
        if not email:
            continue
        attendees.append(
            Attendee(
                email=email,
                name=_extract_param(line, "CN"),
                status=_extract_param(line, "PARTSTAT") or DEFAULT_PARTSTAT,
            )
        )
    return attendees


def _extract_mailto(line: str) -> str:
    # Prefer the property value over SENT-BY/DELEGATED-FROM parameters.
    colon = _find_unquoted(line, ":")
    value = line[colon + 1 :] if colon != -1 else ""
    if value.lower().startswith("mailto:"):
        rest = value[len("mailto:") :]
    else:
        position = line.lower().find("mailto:")
        if position == -1:
            return ""
        rest = line[position + len("mailto:") :]
    end = len(rest)
    for stop in (";", ",", "\r", "\n", " ", '"'):
        index = rest.find(stop)
        if index != -1:
            end = min(end, index)
    return rest[:end]


def _extract_param(line: str, param: str) -> str | None:
    marker = f"{param}="
    position = line.find(marker)
    if position == -1:
        return None
    rest = line[position + len(marker) :]
    if rest.startswith('"'):
        closing = rest.find('"', 1)
        if closing == -1:
            return None
        return rest[1:closing]
    end = len(rest)
    for stop in (";", ":", ",", "\r", "\n"):
        index = rest.find(stop)
        if index != -1:
            end = min(end, index)
    return rest[:end]


# Generation ------------------------------------------------------------------
def _status_text(status: RsvpStatus | str) -> str:
    return status.value if isinstance(status, RsvpStatus) else status


def generate_rsvp(
    event: CalendarEvent, attendee_email: str, status: RsvpStatus | str
) -> str:
    """Build a ``METHOD:REPLY`` document answering ``event`` for one attendee."""
    if not attendee_email:
        raise ValueError("attendee_email must not be empty")

    attendee_name = next(
        (
            attendee.name
            for attendee in event.attendees
            if attendee.email.lower() == attendee_email.lower()
        ),
        None,
    )
    attendee_cn = f";CN={attendee_name}" if attendee_name else ""
    organizer_cn = f";CN={event.organizer_name}" if event.organizer_name else ""

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "METHOD:REPLY",
        "BEGIN:VEVENT",
        f"UID:{event.uid}",
        f"DTSTART:{format_ics_datetime(event.dtstart)}",
    ]
    if event.dtend is not None:
        lines.append(f"DTEND:{format_ics_datetime(event.dtend)}")
    lines.extend(
        [
            f"SUMMARY:{event.summary}",
            f"ORGANIZER{organizer_cn}:mailto:{event.organizer_email}",
            f"ATTENDEE{attendee_cn};PARTSTAT={_status_text(status)}"
            f":mailto:{attendee_email}",
            f"SEQUENCE:{event.sequence}",
            "END:VEVENT",
            "END:VCALENDAR",
        ]
    )
    return "\r\n".join(lines)


def update_partstat(ics: str, attendee_email: str, status: RsvpStatus | str) -> str:
    """Return ``ics`` with one attendee's ``PARTSTAT`` set to ``status``.

    Every other line, including unknown properties and line folding, is
    left byte-for-byte intact. A rewritten attendee line is re-folded.
    """
    target = attendee_email.lower()
    new_status = _status_text(status)
    separator = "\r\n" if "\r\n" in ics else "\n"
    physical = ics.splitlines(keepends=True)

    output: list[str] = []
    index = 0
    while index < len(physical):
        group = [physical[index]]
        index += 1
        while index < len(physical) and physical[index][:1] in (" ", "\t"):
            group.append(physical[index])
            index += 1

        if not group[0].startswith("ATTENDEE"):
            output.extend(group)
            continue

        pieces = [_strip_ending(group[0])]
        pieces.extend(_strip_ending(part)[1:] for part in group[1:])
        logical = "".join(pieces)
        if _extract_mailto(logical).lower() != target:
            output.extend(group)
            continue

        rewritten = _fold(_with_partstat(logical, new_status), separator)
        output.append(rewritten + _line_ending(group[-1]))
    return "".join(output)


def _line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n"):
        return "\n"
    return ""


def _strip_ending(line: str) -> str:
    return line.rstrip("\r\n")


def _with_partstat(line: str, status: str) -> str:
    colon = _find_unquoted(line, ":")
    if colon == -1:
        return line
    head, value = line[:colon], line[colon:]
    params = _split_params(head)
    name, params = params[0], params[1:]
    replaced = False
    for position, param in enumerate(params):
        if param.upper().startswith("PARTSTAT="):
            params[position] = f"PARTSTAT={status}"
            replaced = True
    if not replaced:
        params.append(f"PARTSTAT={status}")
    return ";".join([name, *params]) + value


def _split_params(head: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    quoted = False
    for char in head:
        if char == '"':
            quoted = not quoted
        if char == ";" and not quoted:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def _fold(line: str, separator: str) -> str:
    """Fold ``line`` so no physical line exceeds 75 UTF-8 octets."""
    chunks: list[str] = []
    current: list[str] = []
    size = 0
    for char in line:
        width = len(char.encode("utf-8"))
        if size + width > _FOLD_WIDTH:
            chunks.append("".join(current))
            current = [" "]
            size = 1
        current.append(char)
        size += width
    chunks.append("".join(current))
    return separator.join(chunks)


__all__ = [
    "DEFAULT_PARTSTAT",
    "RsvpStatus",
    "generate_rsvp",
    "parse_ics",
    "unfold_lines",
    "update_partstat",
]
