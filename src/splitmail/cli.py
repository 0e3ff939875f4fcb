"""Command-line entry point for splitmail."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from splitmail.core import (
    AppSettings,
    BadRequestError,
    SplitmailError,
    configure_logging,
    load_app_settings,
)
from splitmail.core.models import Message
from splitmail.search import parse_query
from splitmail.splits import (
    PRIMARY_SPLIT_ID,
    count_by_split,
    filter_by_split,
    load_splits,
    seed_from_identities,
)
from splitmail.transport import JmapSession

# Query window multiplier when listing a single split.
SPLIT_OVERFETCH = 10


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="splitmail JMAP mail client")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=[
            "info",
            "mailboxes",
            "list",
            "splits",
            "seed-splits",
            "archive-sender",
        ],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--mailbox",
        default="inbox",
        help="Mailbox role to list messages from (default: inbox).",
    )
    parser.add_argument(
        "--search",
        default="",
        help="Search query, e.g. 'from:alice is:unread after:2024-01-01'.",
    )
    parser.add_argument(
        "--split",
        default=None,
        help=f"Only show messages of this split ('{PRIMARY_SPLIT_ID}' for the rest).",
    )
    parser.add_argument(
        "--email-id",
        default=None,
        help="Message whose sender should be archived (archive-sender).",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum number of messages to fetch (default: 50).",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> None:
    """Execute the requested CLI command."""
    command = args.command
    if command == "info":
        print("splitmail is ready. Configure a JMAP API token to get started.")
        print(f"JMAP session URL: {settings.jmap.session_url}")
        print(f"Splits config: {settings.splits.config_path}")
        print(f"Calendar sync: {'on' if settings.caldav.enabled else 'off'}")
        return
    asyncio.run(_run_remote(args, settings))


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    try:
        execute(args, settings)
    except SplitmailError as exc:
        print(f"Error: {exc.public_message}", file=sys.stderr)
        sys.exit(1)


async def _run_remote(args: argparse.Namespace, settings: AppSettings) -> None:
    async with JmapSession(settings.jmap) as session:
        await _dispatch(session, args, settings)


async def _dispatch(
    session: JmapSession, args: argparse.Namespace, settings: AppSettings
) -> None:
    if args.command == "mailboxes":
        await _print_mailboxes(session)
    elif args.command == "list":
        await _print_messages(session, settings, args)
    elif args.command == "splits":
        await _print_split_counts(session, settings, args.limit)
    elif args.command == "seed-splits":
        identities = await session.get_identities()
        seeded = seed_from_identities(identities, settings.splits.config_path)
        if seeded is None:
            print("Splits not seeded (existing rules or fewer than two domains).")
        else:
            print(f"Seeded {len(seeded.splits)} split(s).")
    elif args.command == "archive-sender":
        if not args.email_id:
            raise BadRequestError("--email-id is required for archive-sender")
        sender, archived = await session.archive_all_from_sender(args.email_id)
        print(f"Archived {archived} message(s) from {sender}.")


async def _print_mailboxes(session: JmapSession) -> None:
    mailboxes = await session.refresh_mailboxes()
    header = f"{'Role':<10}  {'Unread':>6}  {'Total':>6}  Name"
    print(header)
    print("-" * len(header))
    for mailbox in mailboxes:
        print(
            f"{mailbox.role or '-':<10}  {mailbox.unread_emails:>6}  "
            f"{mailbox.total_emails:>6}  {mailbox.name}"
        )


async def _fetch_inbox(
    session: JmapSession, role: str, limit: int, search: str = ""
) -> list[Message]:
    mailbox = await session.mailbox_for_role(role)
    query = parse_query(search) if search else None
    ids = await session.query_emails(mailbox.id, limit=limit, query=query)
    return await session.get_emails(ids)


async def _print_messages(
    session: JmapSession, settings: AppSettings, args: argparse.Namespace
) -> None:
    fetch_limit = args.limit * SPLIT_OVERFETCH if args.split else args.limit
    messages = await _fetch_inbox(session, args.mailbox, fetch_limit, args.search)
    if args.split:
        config = load_splits(settings.splits.config_path, settings.splits.override)
        messages = filter_by_split(messages, args.split, config)[: args.limit]

    if not messages:
        print("No messages found.")
        return

    print(f"Showing {len(messages)} message(s):")
    for message in messages:
        marker = "*" if message.is_unread else " "
        flag = "!" if message.is_flagged else " "
        sender = str(message.sender[0]) if message.sender else "(unknown sender)"
        received = message.received_at.isoformat(timespec="minutes")
        print(f"{marker}{flag} {received}  {sender:<30.30}  {message.subject or '(no subject)'}")


async def _print_split_counts(
    session: JmapSession, settings: AppSettings, limit: int
) -> None:
    config = load_splits(settings.splits.config_path, settings.splits.override)
    if not config.splits:
        print("No splits configured.")
        return
    messages = await _fetch_inbox(session, "inbox", limit)
    counts = count_by_split(messages, config)
    primary = len(filter_by_split(messages, PRIMARY_SPLIT_ID, config))
    print(f"{PRIMARY_SPLIT_ID:<20}  {primary:>5}")
    for split in config.splits:
        print(f"{split.id:<20}  {counts[split.id]:>5}  {split.name}")


if __name__ == "__main__":
    main()
