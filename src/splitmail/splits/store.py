"""JSON persistence and maintenance helpers for split inbox rules."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from ..core.errors import BadRequestError, NotFoundError
from ..core.models import Identity
from .rules import FilterKind, MatchMode, SplitFilter, SplitInbox, SplitsConfig

LOGGER = logging.getLogger(__name__)


def load_splits(config_path: Path, override: str | None = None) -> SplitsConfig:
    """Load rules from ``override`` when given, else from ``config_path``.

    An unreadable or malformed document yields an empty configuration.
    """
    if override is not None:
        try:
            return SplitsConfig.model_validate_json(override)
        except ValidationError as exc:
            LOGGER.warning("Ignoring malformed split override: %s", exc)
            return SplitsConfig()

    if not config_path.exists():
        return SplitsConfig()
    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        LOGGER.warning("Failed to read splits config %s: %s", config_path, exc)
        return SplitsConfig()
    try:
        return SplitsConfig.model_validate_json(content)
    except ValidationError as exc:
        LOGGER.warning("Malformed splits config %s: %s", config_path, exc)
        return SplitsConfig()


def save_splits(config: SplitsConfig, config_path: Path) -> None:
    """Write ``config`` as pretty-printed JSON, creating parent directories."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    payload = config.model_dump_json(by_alias=True, exclude_none=True, indent=2)
    config_path.write_text(payload, encoding="utf-8")
    LOGGER.debug("Saved %d splits to %s", len(config.splits), config_path)


def generate_splits_from_identities(identities: Iterable[Identity]) -> SplitsConfig:
    """Create one recipient-domain split per distinct identity domain.

    A single domain produces no splits since there is nothing to separate.
    """
    domains = sorted(
        {
            identity.email.split("@", 1)[1].lower()
            for identity in identities
            if "@" in identity.email
        }
    )
    if len(domains) <= 1:
        return SplitsConfig()

    short_names = [domain.split(".", 1)[0] for domain in domains]
    short_names_unique = len(set(short_names)) == len(short_names)

    splits = []
    for domain, short in zip(domains, short_names):
        if short_names_unique:
            split_id, name = short, short
        else:
            split_id, name = domain.replace(".", "-"), domain
        splits.append(
            SplitInbox(
                id=split_id,
                name=name,
                filters=[SplitFilter(kind=FilterKind.TO, pattern=f"*@{domain}")],
                match_mode=MatchMode.ANY,
            )
        )
    return SplitsConfig(splits=splits)


def seed_from_identities(
    identities: Iterable[Identity], config_path: Path
) -> SplitsConfig | None:
    """Persist identity-derived splits unless rules already exist."""
    existing = load_splits(config_path)
    if existing.splits:
        return None

    config = generate_splits_from_identities(identities)
    if not config.splits:
        return None

    try:
        save_splits(config, config_path)
    except OSError as exc:
        LOGGER.warning("Failed to save generated splits: %s", exc)
        return None
    LOGGER.info("Seeded %d splits from identities", len(config.splits))
    return config


def create_split(config: SplitsConfig, split: SplitInbox) -> SplitsConfig:
    """Return a copy of ``config`` with ``split`` appended."""
    if config.get(split.id) is not None:
        raise BadRequestError(f"Split with id '{split.id}' already exists")
    return SplitsConfig(splits=[*config.splits, split])


def update_split(
    config: SplitsConfig, split_id: str, updated: SplitInbox
) -> SplitsConfig:
    """Return a copy of ``config`` with the split ``split_id`` replaced."""
    if config.get(split_id) is None:
        raise NotFoundError(f"Split '{split_id}' not found")
    return SplitsConfig(
        splits=[updated if split.id == split_id else split for split in config.splits]
    )


def delete_split(config: SplitsConfig, split_id: str) -> SplitsConfig:
    """Return a copy of ``config`` without the split ``split_id``."""
    remaining = [split for split in config.splits if split.id != split_id]
    if len(remaining) == len(config.splits):
        raise NotFoundError(f"Split '{split_id}' not found")
    return SplitsConfig(splits=remaining)


__all__ = [
    "create_split",
    "delete_split",
    "generate_splits_from_identities",
    "load_splits",
    "save_splits",
    "seed_from_identities",
    "update_split",
]
