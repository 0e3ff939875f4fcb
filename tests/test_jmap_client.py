"""Tests for the JMAP session adapter."""

# pylint: disable=protected-access

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from splitmail.core.config import JmapSettings
from splitmail.core.errors import (
    AuthError,
    BadRequestError,
    InternalError,
    NetworkError,
    NotConnectedError,
    NotFoundError,
)
from splitmail.core.models import OutgoingSubmission
from splitmail.search import parse_query
from splitmail.transport import JmapSession
from splitmail.transport.jmap_client import MAX_UPLOAD_BYTES

from conftest import SETTINGS, FakeJmapServer, run_with_session


def test_connect_discovers_endpoints(server: FakeJmapServer) -> None:
    async def scenario(session: JmapSession) -> JmapSession:
        return session

    session = run_with_session(server, scenario)

    assert session.is_connected
    assert session.api_url == "https://jmap.test/api/"
    assert session.account_id == "acc1"
    assert server.requests[0].headers["Authorization"] == "Bearer secret-token"


@pytest.mark.parametrize(("status", "error"), [(401, AuthError), (403, AuthError), (500, NetworkError)])
def test_connect_maps_http_failures(server: FakeJmapServer, status: int, error: type[Exception]) -> None:
    server.session_status = status

    async def scenario(session: JmapSession) -> None:
        await session.connect()

    with pytest.raises(error):
        run_with_session(server, scenario, connect=False)


def test_connect_requires_mail_account(server: FakeJmapServer) -> None:
    server.session_document["primaryAccounts"] = {}

    with pytest.raises(InternalError):
        run_with_session(server, lambda session: session.connect(), connect=False)


def test_connect_requires_token(server: FakeJmapServer) -> None:
    settings = JmapSettings(session_url="https://jmap.test/session")

    with pytest.raises(AuthError):
        run_with_session(server, lambda session: session.connect(), connect=False, settings=settings)
    assert server.requests == []


def test_transport_failure_is_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def runner() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await JmapSession(SETTINGS, http_client=client).connect()

    with pytest.raises(NetworkError) as excinfo:
        asyncio.run(runner())
    assert excinfo.value.public_message == "network error"


def test_calls_before_connect_fail(server: FakeJmapServer) -> None:
    with pytest.raises(NotConnectedError):
        run_with_session(server, lambda session: session.get_mailboxes(), connect=False)


def test_mailboxes_and_role_cache(server: FakeJmapServer) -> None:
    async def scenario(session: JmapSession) -> Any:
        mailboxes = await session.get_mailboxes()
        archive = await session.mailbox_for_role("archive")
        await session.mailbox_for_role("trash")
        return mailboxes, archive

    mailboxes, archive = run_with_session(server, scenario)

    assert [m.id for m in mailboxes][:2] == ["mb-inbox", "mb-drafts"]
    assert mailboxes[0].unread_emails == 2
    assert mailboxes[1].total_emails == 0
    assert mailboxes[4].role is None
    assert mailboxes[4].parent_id == "mb-archive"
    assert archive.id == "mb-archive"
    # The role cache is loaded once.
    assert len(server.method_calls("Mailbox/get")) == 2
    assert server.batches[0]["using"] == [
        "urn:ietf:params:jmap:core",
        "urn:ietf:params:jmap:mail",
        "urn:ietf:params:jmap:submission",
    ]


def test_missing_list_is_internal_error(server: FakeJmapServer) -> None:
    server.handlers["Mailbox/get"] = lambda args: {"notFound": []}

    with pytest.raises(InternalError):
        run_with_session(server, lambda session: session.get_mailboxes())


def test_query_emails_builds_filter(server: FakeJmapServer) -> None:
    server.handlers["Email/query"] = lambda args: {"ids": ["e1", "e2"]}

    ids = run_with_session(
        server,
        lambda session: session.query_emails(
            "mb-inbox", limit=20, position=40, query=parse_query("from:boss@x.io")
        ),
    )

    assert ids == ["e1", "e2"]
    arguments = server.method_calls("Email/query")[0]
    assert arguments["filter"] == {
        "operator": "AND",
        "conditions": [{"inMailbox": "mb-inbox"}, {"from": "boss@x.io"}],
    }
    assert arguments["sort"] == [{"property": "receivedAt", "isAscending": False}]
    assert (arguments["limit"], arguments["position"]) == (20, 40)
    assert server.batches[0]["methodCalls"][0][2] == "0"


def test_get_emails_with_bodies(server: FakeJmapServer) -> None:
    server.handlers["Email/get"] = lambda args: {
        "list": [
            {
                "id": "e1",
                "subject": "Hi",
                "receivedAt": "2025-01-01T00:00:00Z",
                "textBody": [{"partId": "1"}],
                "bodyValues": {"1": {"value": "Body"}},
                "bodyStructure": {"type": "text/plain", "partId": "1"},
            }
        ]
    }

    messages = run_with_session(server, lambda session: session.get_emails(["e1"], fetch_body=True))

    assert messages[0].text_body == "Body"
    arguments = server.method_calls("Email/get")[0]
    assert "bodyStructure" in arguments["properties"]
    assert "subParts" in arguments["bodyProperties"]
    assert arguments["fetchTextBodyValues"] is True
    assert arguments["maxBodyValueBytes"] == 1_000_000


def test_get_emails_without_ids_skips_network(server: FakeJmapServer) -> None:
    assert run_with_session(server, lambda session: session.get_emails([])) == []
    assert server.batches == []


def test_get_email_not_found(server: FakeJmapServer) -> None:
    server.handlers["Email/get"] = lambda args: {"list": [], "notFound": args["ids"]}

    with pytest.raises(NotFoundError):
        run_with_session(server, lambda session: session.get_email("nope"))


def test_mutations_report_server_confirmation(server: FakeJmapServer) -> None:
    server.rejected_updates = {"gone"}

    async def scenario(session: JmapSession) -> Any:
        return (
            await session.mark_read("e1"),
            await session.mark_unread("e1"),
            await session.mark_read("gone"),
        )

    assert run_with_session(server, scenario) == (True, True, False)
    updates = [call["update"] for call in server.method_calls("Email/set")]
    assert updates[0] == {"e1": {"keywords/$seen": True}}
    assert updates[1] == {"e1": {"keywords/$seen": None}}


def test_toggle_flag_reads_current_state(server: FakeJmapServer) -> None:
    server.handlers["Email/get"] = lambda args: {
        "list": [{"id": "e1", "keywords": {"$flagged": True}}]
    }

    assert run_with_session(server, lambda session: session.toggle_flag("e1")) is True
    assert server.method_calls("Email/set")[0]["update"] == {
        "e1": {"keywords/$flagged": None}
    }


def test_archive_trash_and_move(server: FakeJmapServer) -> None:
    async def scenario(session: JmapSession) -> Any:
        return (
            await session.archive("e1"),
            await session.trash("e2"),
            await session.move_to_mailbox("e3", "mb-custom"),
        )

    assert run_with_session(server, scenario) == (True, True, True)
    updates = [call["update"] for call in server.method_calls("Email/set")]
    assert updates == [
        {"e1": {"mailboxIds": {"mb-archive": True}}},
        {"e2": {"mailboxIds": {"mb-trash": True}}},
        {"e3": {"mailboxIds": {"mb-custom": True}}},
    ]


def test_archive_batch_counts_updated(server: FakeJmapServer) -> None:
    server.rejected_updates = {"e2"}

    count = run_with_session(server, lambda session: session.archive_batch(["e1", "e2", "e3"]))

    assert count == 2
    assert set(server.method_calls("Email/set")[0]["update"]) == {"e1", "e2", "e3"}


def test_archive_all_from_sender(server: FakeJmapServer) -> None:
    server.handlers["Email/get"] = lambda args: {
        "list": [{"id": "e1", "from": [{"email": "news@shop.example", "name": "Shop"}]}]
    }
    server.handlers["Email/query"] = lambda args: {"ids": ["e1", "e7", "e9"]}
    server.rejected_updates = {"e9"}

    sender, archived = run_with_session(
        server, lambda session: session.archive_all_from_sender("e1")
    )

    assert (sender, archived) == ("news@shop.example", 2)
    query = server.method_calls("Email/query")[0]
    assert query["filter"] == {"from": "news@shop.example"}
    assert query["limit"] == 500
    assert set(server.method_calls("Email/set")[0]["update"]) == {"e1", "e7", "e9"}


def test_archive_all_from_sender_requires_sender(server: FakeJmapServer) -> None:
    server.handlers["Email/get"] = lambda args: {"list": [{"id": "e1", "from": []}]}

    with pytest.raises(BadRequestError, match="No sender found"):
        run_with_session(server, lambda session: session.archive_all_from_sender("e1"))
    assert server.method_calls("Email/query") == []


def test_send_email_chains_draft_and_submission(server: FakeJmapServer) -> None:
    submission = OutgoingSubmission(
        to=["bob@example.com"], cc=["carol@example.com"], bcc=["dave@example.com"],
        subject="Hello", text_body="Hi Bob",
    )

    sent_id = run_with_session(server, lambda session: session.send_email(submission))

    assert sent_id == "e-sent"
    batch = server.batches[-1]
    assert [call[0] for call in batch["methodCalls"]] == ["Email/set", "EmailSubmission/set"]
    assert [call[2] for call in batch["methodCalls"]] == ["0", "1"]
    draft = batch["methodCalls"][0][1]["create"]["draft"]
    assert draft["mailboxIds"] == {"mb-drafts": True}
    assert draft["from"] == [{"email": "me@example.com"}]
    send = batch["methodCalls"][1][1]["create"]["send"]
    assert send["emailId"] == "#draft"
    assert send["identityId"] == "ident-1"
    assert send["envelope"]["rcptTo"] == [
        {"email": "bob@example.com"},
        {"email": "carol@example.com"},
        {"email": "dave@example.com"},
    ]


def test_send_email_identity_resolution(server: FakeJmapServer) -> None:
    submission = OutgoingSubmission(to=["x@y.z"], cc=[], subject="s", text_body="b")

    async def scenario(session: JmapSession) -> None:
        await session.send_email(submission, "ALIAS@side.dev")
        await session.send_email(submission, "unknown@else.where")
        await session.send_email(submission, "me@example.com", identity_id="ident-override")

    run_with_session(server, scenario)

    identity_ids = [
        call["create"]["send"]["identityId"]
        for call in server.method_calls("EmailSubmission/set")
    ]
    assert identity_ids == ["ident-2", "ident-1", "ident-override"]
    assert len(server.method_calls("Identity/get")) == 1


def test_send_email_surfaces_rejections(server: FakeJmapServer) -> None:
    server.handlers["Email/set"] = lambda args: {
        "notCreated": {"draft": {"type": "invalidProperties"}}
    }
    submission = OutgoingSubmission(to=["x@y.z"], cc=[], subject="s", text_body="b")

    with pytest.raises(InternalError, match="Email creation failed: .*invalidProperties"):
        run_with_session(server, lambda session: session.send_email(submission))


def test_send_email_surfaces_submission_rejection(server: FakeJmapServer) -> None:
    server.handlers["EmailSubmission/set"] = lambda args: {
        "notCreated": {"send": {"type": "forbiddenFrom"}}
    }
    submission = OutgoingSubmission(to=["x@y.z"], cc=[], subject="s", text_body="b")

    with pytest.raises(InternalError, match="Email submission failed"):
        run_with_session(server, lambda session: session.send_email(submission))


def test_send_email_reports_method_error(server: FakeJmapServer) -> None:
    server.method_errors["Email/set"] = {
        "type": "invalidArguments",
        "description": "bad from",
    }
    submission = OutgoingSubmission(to=["x@y.z"], cc=[], subject="s", text_body="b")

    with pytest.raises(InternalError) as excinfo:
        run_with_session(server, lambda session: session.send_email(submission))

    assert "invalidArguments" in str(excinfo.value)
    assert "bad from" in str(excinfo.value)
    assert "no detail" not in str(excinfo.value)


def test_download_blob(server: FakeJmapServer) -> None:
    server.blobs["blob-1"] = ("application/pdf", b"%PDF-1.7")

    content_type, data = run_with_session(
        server, lambda session: session.download_blob("blob-1", "my report.pdf", "application/pdf")
    )

    assert content_type == "application/pdf"
    assert data == b"%PDF-1.7"
    url = server.requests[-1].url
    assert url.raw_path.decode().startswith("/download/acc1/blob-1/my%20report.pdf")


@pytest.mark.parametrize(
    ("blob_id", "name"),
    [("../etc", "x"), ("blob", "a/b.txt"), ("blob", ".."), ("", "x"), ("b\\c", "x")],
)
def test_download_rejects_unsafe_segments(server: FakeJmapServer, blob_id: str, name: str) -> None:
    with pytest.raises(BadRequestError):
        run_with_session(server, lambda session: session.download_blob(blob_id, name))
    assert len(server.requests) == 1


def test_download_missing_blob(server: FakeJmapServer) -> None:
    with pytest.raises(NotFoundError):
        run_with_session(server, lambda session: session.download_blob("absent", "x.bin"))


def test_get_calendar_data(server: FakeJmapServer) -> None:
    server.blobs["cal-1"] = ("text/calendar", b"BEGIN:VCALENDAR")
    server.handlers["Email/get"] = lambda args: {
        "list": [
            {
                "id": args["ids"][0],
                "bodyStructure": {
                    "type": "multipart/mixed",
                    "subParts": [{"type": "text/calendar", "blobId": "cal-1"}],
                },
            }
        ]
    }

    assert run_with_session(server, lambda session: session.get_calendar_data("e1")) == "BEGIN:VCALENDAR"
    assert server.method_calls("Email/get")[0]["properties"] == ["bodyStructure"]


def test_get_calendar_data_without_calendar_part(server: FakeJmapServer) -> None:
    server.handlers["Email/get"] = lambda args: {
        "list": [{"id": "e1", "bodyStructure": {"type": "text/plain"}}]
    }

    assert run_with_session(server, lambda session: session.get_calendar_data("e1")) is None


def test_upload_blob(server: FakeJmapServer) -> None:
    blob = run_with_session(
        server,
        lambda session: session.upload_blob(b"hello", "text/plain", 'we"ird\r\nname.txt'),
    )

    assert blob.blob_id == "blob-up"
    assert blob.size == 5
    assert blob.name == "weirdname.txt"
    request = server.requests[-1]
    assert request.url.path == "/upload/acc1/"
    assert request.headers["Content-Type"] == "text/plain"


def test_upload_blob_rejects_oversized_payload(server: FakeJmapServer) -> None:
    with pytest.raises(BadRequestError, match="too large"):
        run_with_session(server, lambda session: session.upload_blob(b"\0" * (MAX_UPLOAD_BYTES + 1)))
    assert len(server.requests) == 1
