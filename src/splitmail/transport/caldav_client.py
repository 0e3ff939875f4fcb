"""Minimal CalDAV client for storing accepted invitations."""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from ..core.errors import BadRequestError, NetworkError
from .jmap_client import JmapSession, is_safe_path_segment

LOGGER = logging.getLogger(__name__)

DEFAULT_CALENDAR = "Default"


class CalDavClient:
    """Write and remove events in the user's default calendar collection.

    Shares the HTTP client and bearer token of the JMAP session.
    """

    def __init__(self, session: JmapSession, base_url: str) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")

    def event_url(self, uid: str) -> str:
        """Return the resource URL for the event ``uid``."""
        if not is_safe_path_segment(uid):
            raise BadRequestError("Invalid event UID")
        username = quote(self._session.username, safe="@.")
        return f"{self._base_url}/{username}/{DEFAULT_CALENDAR}/{quote(uid, safe='@.-_')}.ics"

    async def put_event(self, ics: str, uid: str, only_if_new: bool = False) -> bool:
        """Store ``ics`` under ``uid``; with ``only_if_new`` never overwrite."""
        headers = {
            "Authorization": self._session.auth_header,
            "Content-Type": "text/calendar; charset=utf-8",
        }
        if only_if_new:
            headers["If-None-Match"] = "*"

        url = self.event_url(uid)
        async with self._session.lock.read():
            try:
                response = await self._session.http_client.put(
                    url, content=ics.encode("utf-8"), headers=headers
                )
            except httpx.HTTPError as exc:
                raise NetworkError(f"CalDAV PUT failed: {exc}") from exc

        if response.status_code == 412 and only_if_new:
            LOGGER.debug("Event %s already present in calendar", uid)
            return False
        if not response.is_success:
            LOGGER.warning("CalDAV PUT %s returned HTTP %s", uid, response.status_code)
            return False
        LOGGER.info("Stored calendar event %s", uid)
        return True

    async def delete_event(self, uid: str) -> bool:
        """Remove the event ``uid``; a missing event counts as failure."""
        url = self.event_url(uid)
        async with self._session.lock.read():
            try:
                response = await self._session.http_client.delete(
                    url, headers={"Authorization": self._session.auth_header}
                )
            except httpx.HTTPError as exc:
                raise NetworkError(f"CalDAV DELETE failed: {exc}") from exc

        if not response.is_success:
            LOGGER.debug("CalDAV DELETE %s returned HTTP %s", uid, response.status_code)
            return False
        LOGGER.info("Removed calendar event %s", uid)
        return True


__all__ = ["CalDavClient", "DEFAULT_CALENDAR"]
