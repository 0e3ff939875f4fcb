"""Shared fixtures: an in-process JMAP and CalDAV server."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pytest

from splitmail.core.config import JmapSettings
from splitmail.transport import JmapSession

SETTINGS = JmapSettings(
    session_url="https://jmap.test/session",
    username="me@example.com",
    api_token="secret-token",
)

SESSION_DOCUMENT = {
    "apiUrl": "https://jmap.test/api/",
    "uploadUrl": "https://jmap.test/upload/{accountId}/",
    "downloadUrl": "https://jmap.test/download/{accountId}/{blobId}/{name}?type={type}",
    "primaryAccounts": {"urn:ietf:params:jmap:mail": "acc1"},
    "username": "me@example.com",
}

MAILBOXES = [
    {"id": "mb-inbox", "name": "Inbox", "role": "inbox", "totalEmails": 10, "unreadEmails": 2},
    {"id": "mb-drafts", "name": "Drafts", "role": "drafts"},
    {"id": "mb-archive", "name": "Archive", "role": "archive", "totalEmails": 99},
    {"id": "mb-trash", "name": "Trash", "role": "trash"},
    {"id": "mb-custom", "name": "Receipts", "role": None, "parentId": "mb-archive"},
]

IDENTITIES = [
    {"id": "ident-1", "email": "me@example.com", "name": "Me"},
    {"id": "ident-2", "email": "alias@side.dev", "name": "Alias"},
]

CALDAV_BASE = "https://caldav.test/dav/calendars/user"

Handler = Callable[[dict[str, Any]], dict[str, Any]]
Scenario = Callable[[JmapSession], Awaitable[Any]]


class FakeJmapServer:
    """Answers session, API, blob and calendar requests in-process."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.batches: list[dict[str, Any]] = []
        self.session_status = 200
        self.session_document: dict[str, Any] = dict(SESSION_DOCUMENT)
        self.handlers: dict[str, Handler] = {
            "Mailbox/get": lambda args: {"list": MAILBOXES},
            "Identity/get": lambda args: {"list": IDENTITIES},
            "Email/set": self._email_set,
            "EmailSubmission/set": lambda args: {
                "created": {"send": {"id": "sub-1", "emailId": "e-sent"}}
            },
        }
        self.rejected_updates: set[str] = set()
        self.method_errors: dict[str, dict[str, Any]] = {}
        self.blobs: dict[str, tuple[str, bytes]] = {}
        self.calendar: dict[str, str] = {}
        self.caldav_status: int | None = None

    def _email_set(self, args: dict[str, Any]) -> dict[str, Any]:
        if "create" in args:
            return {"created": {"draft": {"id": "e-draft"}}}
        updated = {
            email_id: None
            for email_id in args["update"]
            if email_id not in self.rejected_updates
        }
        not_updated = {
            email_id: {"type": "notFound"} for email_id in self.rejected_updates
        }
        return {"updated": updated, "notUpdated": not_updated}

    def method_calls(self, name: str) -> list[dict[str, Any]]:
        return [
            call[1]
            for batch in self.batches
            for call in batch["methodCalls"]
            if call[0] == name
        ]

    def calendar_requests(self) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.host == "caldav.test"]

    def _calendar(self, request: httpx.Request) -> httpx.Response:
        if self.caldav_status is not None:
            return httpx.Response(self.caldav_status)
        resource = request.url.path.rsplit("/", 1)[-1]
        if request.method == "PUT":
            if request.headers.get("If-None-Match") == "*" and resource in self.calendar:
                return httpx.Response(412)
            created = resource not in self.calendar
            self.calendar[resource] = request.content.decode("utf-8")
            return httpx.Response(201 if created else 204)
        if request.method == "DELETE":
            if self.calendar.pop(resource, None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        return httpx.Response(405)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "caldav.test":
            return self._calendar(request)
        path = request.url.path
        if path == "/session":
            return httpx.Response(self.session_status, json=self.session_document)
        if path == "/api/":
            batch = json.loads(request.content)
            self.batches.append(batch)
            responses = [
                ["error", self.method_errors[name], call_id]
                if name in self.method_errors
                else [name, self.handlers[name](args), call_id]
                for name, args, call_id in batch["methodCalls"]
            ]
            return httpx.Response(200, json={"methodResponses": responses})
        if path.startswith("/upload/"):
            return httpx.Response(
                200,
                json={"blobId": "blob-up", "size": len(request.content), "type": "x"},
            )
        if path.startswith("/download/"):
            blob_id = path.split("/")[3]
            if blob_id not in self.blobs:
                return httpx.Response(404)
            content_type, data = self.blobs[blob_id]
            return httpx.Response(200, content=data, headers={"content-type": content_type})
        return httpx.Response(404)


def run_with_session(
    server: FakeJmapServer,
    scenario: Scenario,
    *,
    connect: bool = True,
    settings: JmapSettings = SETTINGS,
) -> Any:
    """Run ``scenario`` against a session wired to ``server``."""

    async def runner() -> Any:
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            session = JmapSession(settings, http_client=client)
            if connect:
                await session.connect()
            return await scenario(session)

    return asyncio.run(runner())


@pytest.fixture
def server() -> FakeJmapServer:
    return FakeJmapServer()
