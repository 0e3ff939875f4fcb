"""Calendar invitation workflow: auto-add on open, RSVP replies."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable

from ..core.errors import (
    BadRequestError,
    InternalError,
    NotFoundError,
    SplitmailError,
)
from ..core.models import CalendarEvent, Message, OutgoingSubmission
from ..transport.caldav_client import CalDavClient
from ..transport.jmap_client import JmapSession
from .ics import RsvpStatus, generate_rsvp, parse_ics, update_partstat

LOGGER = logging.getLogger(__name__)


class InvitationService:
    """Tie message reads and RSVP answers to the user's calendar.

    ``caldav`` may be ``None`` when calendar storage is disabled; replies
    are still sent to the organizer.
    """

    def __init__(self, session: JmapSession, caldav: CalDavClient | None) -> None:
        self._session = session
        self._caldav = caldav
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _spawn(self, coro: Awaitable[bool], description: str) -> None:
        async def runner() -> None:
            try:
                await coro
            except Exception as exc:  # pylint: disable=broad-exception-caught
                LOGGER.warning("%s failed: %s", description, exc)

        task = asyncio.create_task(runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every detached calendar update to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def open_message(
        self, email_id: str
    ) -> tuple[Message, CalendarEvent | None]:
        """Fetch a message for display and apply its side effects.

        Unread messages are marked read. An invitation (``REQUEST``) is added
        to the calendar without overwriting an existing copy; a ``CANCEL``
        removes it. Calendar updates run detached from this call.
        """
        message = await self._session.get_email(email_id, fetch_body=True)

        if message.is_unread:
            try:
                await self._session.mark_read(email_id)
            except SplitmailError as exc:
                LOGGER.warning("Auto mark-read failed for %s: %s", email_id, exc)

        if not message.has_calendar:
            return message, None

        try:
            ics_data = await self._session.get_calendar_data(email_id)
        except SplitmailError as exc:
            LOGGER.warning("Calendar data unavailable for %s: %s", email_id, exc)
            return message, None
        if ics_data is None:
            return message, None
        event = parse_ics(ics_data)
        if event is None:
            return message, None

        if self._caldav is not None:
            if event.method == "REQUEST":
                self._spawn(
                    self._caldav.put_event(ics_data, event.uid, only_if_new=True),
                    f"Calendar auto-add of {event.uid}",
                )
            elif event.method == "CANCEL":
                self._spawn(
                    self._caldav.delete_event(event.uid),
                    f"Calendar auto-remove of {event.uid}",
                )
        return message, event

    async def _load_event(self, email_id: str) -> tuple[str, CalendarEvent]:
        ics_data = await self._session.get_calendar_data(email_id)
        if ics_data is None:
            raise NotFoundError("No calendar data found")
        event = parse_ics(ics_data)
        if event is None:
            raise InternalError("Failed to parse calendar data")
        return ics_data, event

    async def _attendee_address(self, email_id: str, event: CalendarEvent) -> str:
        message = await self._session.get_email(email_id)
        invited = {attendee.email.lower() for attendee in event.attendees}
        for address in [*message.to, *message.cc]:
            if address.email.lower() in invited:
                return address.email
        return self._session.username

    async def respond(
        self, email_id: str, status: RsvpStatus | str
    ) -> CalendarEvent:
        """Answer an invitation and mirror the answer in the calendar."""
        if not isinstance(status, RsvpStatus):
            try:
                status = RsvpStatus.parse(status)
            except ValueError as exc:
                raise BadRequestError(f"Unknown RSVP status: {status}") from exc
        ics_data, event = await self._load_event(email_id)
        attendee_email = await self._attendee_address(email_id, event)

        submission = OutgoingSubmission(
            to=[event.organizer_email],
            cc=[],
            subject=f"Re: {event.summary}",
            text_body=(
                f"{attendee_email} has {status.value.lower()} "
                f"the invitation: {event.summary}"
            ),
            calendar_ics=generate_rsvp(event, attendee_email, status),
        )
        try:
            await self._session.send_email(submission, attendee_email)
        except SplitmailError as exc:
            LOGGER.warning(
                "Failed to send reply to %s: %s", event.organizer_email, exc
            )

        if self._caldav is not None:
            try:
                if status is RsvpStatus.DECLINED:
                    await self._caldav.delete_event(event.uid)
                else:
                    await self._caldav.put_event(
                        update_partstat(ics_data, attendee_email, status), event.uid
                    )
            except SplitmailError as exc:
                LOGGER.warning("Calendar update failed for %s: %s", event.uid, exc)

        wanted = attendee_email.lower()
        attendees = tuple(
            dataclasses.replace(attendee, status=status.value)
            if attendee.email.lower() == wanted
            else attendee
            for attendee in event.attendees
        )
        return dataclasses.replace(event, attendees=attendees)

    async def add_to_calendar(self, email_id: str) -> bool:
        """Store a message's event in the calendar, replacing any copy."""
        if self._caldav is None:
            raise InternalError("Calendar storage is disabled")
        ics_data, event = await self._load_event(email_id)
        return await self._caldav.put_event(ics_data, event.uid)


__all__ = ["InvitationService"]
