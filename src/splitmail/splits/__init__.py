"""Split inbox rules: models, matching, and persistence."""

from .glob import glob_match
from .rules import (
    PRIMARY_SPLIT_ID,
    FilterKind,
    MatchMode,
    SplitFilter,
    SplitInbox,
    SplitsConfig,
    count_by_split,
    filter_by_split,
    matches_any_split,
    matches_filter,
    matches_split,
)
from .store import (
    create_split,
    delete_split,
    generate_splits_from_identities,
    load_splits,
    save_splits,
    seed_from_identities,
    update_split,
)

__all__ = [
    "FilterKind",
    "MatchMode",
    "PRIMARY_SPLIT_ID",
    "SplitFilter",
    "SplitInbox",
    "SplitsConfig",
    "count_by_split",
    "create_split",
    "delete_split",
    "filter_by_split",
    "generate_splits_from_identities",
    "glob_match",
    "load_splits",
    "matches_any_split",
    "matches_filter",
    "matches_split",
    "save_splits",
    "seed_from_identities",
    "update_split",
]
