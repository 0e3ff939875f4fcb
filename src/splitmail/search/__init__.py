"""Search query parsing and JMAP filter translation."""

from .query import KNOWN_OPERATORS, parse_query, to_jmap_filter

__all__ = ["KNOWN_OPERATORS", "parse_query", "to_jmap_filter"]
