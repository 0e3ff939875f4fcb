"""Split inbox rule models and the matching engine."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..core.models import Message
from .glob import glob_match

LOGGER = logging.getLogger(__name__)

PRIMARY_SPLIT_ID = "primary"


class FilterKind(str, Enum):
    """What a filter clause inspects."""

    FROM = "from"
    TO = "to"
    SUBJECT = "subject"
    # Legacy documents used ``header`` for "Content-Type contains calendar".
    HEADER = "header"
    CALENDAR = "calendar"


class MatchMode(str, Enum):
    """How the clauses of a split combine."""

    ANY = "any"
    ALL = "all"


class SplitFilter(BaseModel):
    """Single clause of a split rule."""

    model_config = ConfigDict(populate_by_name=True)

    kind: FilterKind = Field(alias="type")
    pattern: str
    name: str | None = None


class SplitInbox(BaseModel):
    """Named view selecting messages that satisfy its filters."""

    id: str
    name: str
    icon: str | None = None
    filters: list[SplitFilter] = Field(default_factory=list)
    match_mode: MatchMode = MatchMode.ANY


class SplitsConfig(BaseModel):
    """Ordered collection of split inbox rules."""

    splits: list[SplitInbox] = Field(default_factory=list)

    def get(self, split_id: str) -> SplitInbox | None:
        """Return the split with ``split_id`` if configured."""
        for split in self.splits:
            if split.id == split_id:
                return split
        return None


def _subject_matches(pattern: str, subject: str) -> bool:
    try:
        compiled = re.compile(pattern, re.IGNORECASE)
    except re.error:
        LOGGER.warning(
            "Invalid regex %r, falling back to substring match", pattern
        )
        return pattern.lower() in subject.lower()
    return compiled.search(subject) is not None


def matches_filter(message: Message, split_filter: SplitFilter) -> bool:
    """Evaluate one clause against ``message``."""
    kind = split_filter.kind
    if kind is FilterKind.FROM:
        return any(
            glob_match(split_filter.pattern, address.email)
            for address in message.sender
        )
    if kind is FilterKind.TO:
        return any(
            glob_match(split_filter.pattern, address.email)
            for address in [*message.to, *message.cc]
        )
    if kind is FilterKind.SUBJECT:
        return _subject_matches(split_filter.pattern, message.subject)
    return message.has_calendar


def matches_split(message: Message, split: SplitInbox) -> bool:
    """Combine the split's clauses with its match mode; no clauses never match."""
    if not split.filters:
        return False
    results = (matches_filter(message, clause) for clause in split.filters)
    if split.match_mode is MatchMode.ALL:
        return all(results)
    return any(results)


def matches_any_split(message: Message, config: SplitsConfig) -> bool:
    """Return ``True`` when ``message`` belongs to at least one split."""
    return any(matches_split(message, split) for split in config.splits)


def filter_by_split(
    messages: Iterable[Message], split_id: str, config: SplitsConfig
) -> list[Message]:
    """Keep the messages shown under ``split_id``.

    The ``primary`` split holds everything no configured split claims.
    Unknown split ids select nothing.
    """
    if split_id == PRIMARY_SPLIT_ID:
        return [
            message for message in messages if not matches_any_split(message, config)
        ]

    split = config.get(split_id)
    if split is None:
        return []
    return [message for message in messages if matches_split(message, split)]


def count_by_split(
    messages: Iterable[Message], config: SplitsConfig
) -> dict[str, int]:
    """Count matching messages per configured split."""
    materialized = list(messages)
    return {
        split.id: sum(1 for message in materialized if matches_split(message, split))
        for split in config.splits
    }


__all__ = [
    "FilterKind",
    "MatchMode",
    "PRIMARY_SPLIT_ID",
    "SplitFilter",
    "SplitInbox",
    "SplitsConfig",
    "count_by_split",
    "filter_by_split",
    "matches_any_split",
    "matches_filter",
    "matches_split",
]
