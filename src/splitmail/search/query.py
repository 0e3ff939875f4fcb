"""Search mini-language: ``keyword:value`` operators plus free text.

Recognised operators are ``from``, ``to``, ``subject``, ``has``, ``is``,
``before``, ``after``, ``newer_than`` and ``older_than``. Values may be
double-quoted to include spaces; an unterminated quote runs to the end of
the input. Anything else is collected as free text.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta
from typing import Any

from ..core.datetime_utils import format_filter_date
from ..core.models import ParsedQuery

LOGGER = logging.getLogger(__name__)

KNOWN_OPERATORS = frozenset(
    {
        "from",
        "to",
        "subject",
        "has",
        "is",
        "before",
        "after",
        "newer_than",
        "older_than",
    }
)

_UNIT_DAYS = {"d": 1, "w": 7, "m": 30}


def parse_query(raw: str, *, today: date | None = None) -> ParsedQuery:
    """Parse ``raw`` into a :class:`ParsedQuery`.

    ``today`` anchors relative ``newer_than``/``older_than`` offsets and
    defaults to the current UTC date.
    """
    raw = raw.strip()
    if not raw:
        return ParsedQuery()
    if today is None:
        today = datetime.now(tz=UTC).date()

    senders: list[str] = []
    recipients: list[str] = []
    subjects: list[str] = []
    has_attachment = False
    is_unread: bool | None = None
    is_flagged: bool | None = None
    before: date | None = None
    after: date | None = None
    free_text: list[str] = []

    pos = 0
    length = len(raw)
    while pos < length:
        while pos < length and raw[pos] == " ":
            pos += 1
        if pos >= length:
            break

        colon = raw.find(":", pos)
        if colon != -1:
            keyword = raw[pos:colon]
            if " " not in keyword and keyword in KNOWN_OPERATORS:
                value, pos = _extract_value(raw, colon + 1)
                if keyword == "from":
                    senders.append(value)
                elif keyword == "to":
                    recipients.append(value)
                elif keyword == "subject":
                    subjects.append(value)
                elif keyword == "has":
                    if value == "attachment":
                        has_attachment = True
                elif keyword == "is":
                    if value == "unread":
                        is_unread = True
                    elif value == "read":
                        is_unread = False
                    elif value in ("starred", "flagged"):
                        is_flagged = True
                elif keyword == "before":
                    before = _parse_iso_date(value)
                elif keyword == "after":
                    after = _parse_iso_date(value)
                elif keyword == "newer_than":
                    after = _parse_date_offset(value, today)
                elif keyword == "older_than":
                    before = _parse_date_offset(value, today)
                continue

        word_end = raw.find(" ", pos)
        if word_end == -1:
            word_end = length
        free_text.append(raw[pos:word_end])
        pos = word_end

    return ParsedQuery(
        from_=tuple(senders),
        to=tuple(recipients),
        subject=tuple(subjects),
        has_attachment=has_attachment,
        is_unread=is_unread,
        is_flagged=is_flagged,
        before=before,
        after=after,
        text=" ".join(free_text),
    )


def _extract_value(raw: str, start: int) -> tuple[str, int]:
    """Return the operator value starting at ``start`` and the index after it."""
    if start >= len(raw):
        return "", start

    if raw[start] == '"':
        content_start = start + 1
        end = raw.find('"', content_start)
        if end == -1:
            return raw[content_start:], len(raw)
        return raw[content_start:end], end + 1

    end = raw.find(" ", start)
    if end == -1:
        end = len(raw)
    return raw[start:end], end


def _parse_iso_date(value: str) -> date | None:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


def _parse_date_offset(value: str, today: date) -> date | None:
    """Resolve ``7d``/``2w``/``3m`` style offsets or ``MM-DD-YY[YY]`` dates."""
    value = value.strip()
    if len(value) < 2:
        return None

    magnitude, unit = value[:-1], value[-1]
    try:
        amount = int(magnitude)
    except ValueError:
        amount = None
    if amount is not None and amount > 0 and unit in _UNIT_DAYS:
        return today - timedelta(days=amount * _UNIT_DAYS[unit])

    for fmt in ("%m-%d-%y", "%m-%d-%Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    LOGGER.debug("Ignoring unrecognised date offset %r", value)
    return None


def to_jmap_filter(
    query: ParsedQuery | None, mailbox_id: str | None = None
) -> dict[str, Any]:
    """Translate a parsed query and optional mailbox scope to a JMAP filter.

    No conditions yield ``{}`` (match everything); a single condition is
    returned bare; several are combined under an ``AND`` operator.
    """
    conditions: list[dict[str, Any]] = []

    if mailbox_id:
        conditions.append({"inMailbox": mailbox_id})

    if query is not None:
        conditions.extend({"from": value} for value in query.from_)
        conditions.extend({"to": value} for value in query.to)
        conditions.extend({"subject": value} for value in query.subject)
        if query.has_attachment:
            conditions.append({"hasAttachment": True})
        if query.is_unread is True:
            conditions.append({"notKeyword": "$seen"})
        elif query.is_unread is False:
            conditions.append({"hasKeyword": "$seen"})
        if query.is_flagged is True:
            conditions.append({"hasKeyword": "$flagged"})
        if query.after is not None:
            conditions.append({"after": format_filter_date(query.after)})
        if query.before is not None:
            conditions.append({"before": format_filter_date(query.before)})
        if query.text:
            conditions.append({"text": query.text})

    if not conditions:
        return {}
    if len(conditions) == 1:
        return conditions[0]
    return {"operator": "AND", "conditions": conditions}


__all__ = ["KNOWN_OPERATORS", "parse_query", "to_jmap_filter"]
