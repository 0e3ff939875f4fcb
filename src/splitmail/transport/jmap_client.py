"""JMAP transport adapter: session discovery, batched calls, and mail actions."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from types import TracebackType
from typing import Any
from urllib.parse import quote

import httpx

from ..core.config import JmapSettings
from ..core.errors import (
    AuthError,
    BadRequestError,
    InternalError,
    NetworkError,
    NotConnectedError,
    NotFoundError,
)
from ..core.locks import AsyncRWLock
from ..core.models import (
    Identity,
    Mailbox,
    Message,
    OutgoingSubmission,
    ParsedQuery,
    UploadedBlob,
)
from ..mime.compose import build_draft_email, envelope_recipients
from ..mime.structure import find_calendar_blob_id, parse_email
from ..search.query import to_jmap_filter

LOGGER = logging.getLogger(__name__)

CAPABILITIES = (
    "urn:ietf:params:jmap:core",
    "urn:ietf:params:jmap:mail",
    "urn:ietf:params:jmap:submission",
)
MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"

EMAIL_PROPERTIES = (
    "id",
    "blobId",
    "threadId",
    "mailboxIds",
    "keywords",
    "receivedAt",
    "subject",
    "from",
    "to",
    "cc",
    "preview",
    "hasAttachment",
    "size",
)
BODY_PROPERTIES = ("textBody", "htmlBody", "bodyValues", "bodyStructure")
BODY_PART_PROPERTIES = (
    "partId",
    "blobId",
    "type",
    "name",
    "size",
    "disposition",
    "subParts",
)
MAX_BODY_VALUE_BYTES = 1_000_000
MAX_UPLOAD_BYTES = 25 * 1024 * 1024
SENDER_ARCHIVE_LIMIT = 500


def is_safe_path_segment(value: str) -> bool:
    """Reject values that could escape a URL path segment."""
    return (
        bool(value)
        and "/" not in value
        and "\\" not in value
        and "\0" not in value
        and value not in (".", "..")
    )


def sanitize_filename(name: str) -> str:
    """Strip characters that would break a quoted header parameter."""
    return "".join(char for char in name if char not in '"\\\r\n')


def _method_result(envelope: Mapping[str, Any], index: int) -> dict[str, Any]:
    """Return the arguments object of the ``index``-th method response."""
    responses = envelope.get("methodResponses")
    if not isinstance(responses, list) or index >= len(responses):
        return {}
    triple = responses[index]
    if not isinstance(triple, list) or len(triple) < 2:
        return {}
    if triple[0] == "error":
        LOGGER.warning("JMAP method error: %s", triple[1])
    result = triple[1]
    return result if isinstance(result, dict) else {}


def _rejection_detail(
    envelope: Mapping[str, Any], index: int, result: Mapping[str, Any]
) -> Any:
    """Describe why a ``/set`` call created nothing."""
    not_created = result.get("notCreated")
    if not_created:
        return not_created
    responses = envelope.get("methodResponses")
    if isinstance(responses, list) and index < len(responses):
        triple = responses[index]
        if isinstance(triple, list) and len(triple) >= 2 and triple[0] == "error":
            error = triple[1] if isinstance(triple[1], dict) else {}
            return {
                key: error[key] for key in ("type", "description") if key in error
            } or "no detail"
    return "no detail"


def _require_list(result: Mapping[str, Any], key: str, method: str) -> list[Any]:
    value = result.get(key)
    if not isinstance(value, list):
        raise InternalError(f"Invalid {method} response: missing '{key}'")
    return value


def _updated_ids(result: Mapping[str, Any]) -> dict[str, Any]:
    updated = result.get("updated")
    return updated if isinstance(updated, dict) else {}


class JmapSession:
    """Authenticated JMAP session shared by every request handler.

    Reads (building and sending calls) hold the shared side of ``lock``;
    discovery and cache population hold the exclusive side.
    """

    def __init__(
        self,
        settings: JmapSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the session from settings; ``connect`` does the I/O."""
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.timeout_seconds)
        )
        self.lock = AsyncRWLock()
        self.username = settings.username or ""
        self.api_url: str | None = None
        self.upload_url: str | None = None
        self.download_url: str | None = None
        self.account_id: str | None = None
        self.mailbox_cache: dict[str, Mailbox] = {}
        self.identities: list[Identity] | None = None
        self.identity_id: str | None = None

    # Context manager helpers -------------------------------------------------
    async def __aenter__(self) -> JmapSession:
        """Connect on entering an ``async with`` scope."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Release the HTTP client on scope exit."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this session created it."""
        if self._owns_client:
            await self._client.aclose()

    # Connection ---------------------------------------------------------------
    @property
    def auth_header(self) -> str:
        return f"Bearer {self._settings.api_token or ''}"

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._client

    @property
    def is_connected(self) -> bool:
        return self.api_url is not None and self.account_id is not None

    async def connect(self) -> None:
        """Discover the API endpoints and primary mail account."""
        if not self._settings.api_token:
            raise AuthError("JMAP API token is not configured")

        async with self.lock.write():
            LOGGER.debug("Requesting JMAP session from %s", self._settings.session_url)
            try:
                response = await self._client.get(
                    self._settings.session_url,
                    headers={"Authorization": self.auth_header},
                )
            except httpx.HTTPError as exc:
                raise NetworkError(f"JMAP session request failed: {exc}") from exc

            if response.status_code == 401:
                raise AuthError("Authentication failed (401)")
            if response.status_code == 403:
                raise AuthError("Access forbidden (403)")
            if response.status_code != 200:
                raise NetworkError(f"JMAP session returned HTTP {response.status_code}")

            body = self._json(response, "session")
            api_url = body.get("apiUrl")
            accounts = body.get("primaryAccounts")
            account_id = (
                accounts.get(MAIL_CAPABILITY) if isinstance(accounts, dict) else None
            )
            if not isinstance(api_url, str) or not isinstance(account_id, str):
                raise InternalError("JMAP session is missing apiUrl or mail account")

            self.api_url = api_url
            self.account_id = account_id
            upload_url = body.get("uploadUrl")
            download_url = body.get("downloadUrl")
            self.upload_url = upload_url if isinstance(upload_url, str) else None
            self.download_url = download_url if isinstance(download_url, str) else None
            session_user = body.get("username")
            if not self.username and isinstance(session_user, str):
                self.username = session_user

        LOGGER.info("Connected to JMAP as %s", self.username)

    def _require_account(self) -> str:
        if self.account_id is None:
            raise NotConnectedError()
        return self.account_id

    @staticmethod
    def _json(response: httpx.Response, what: str) -> dict[str, Any]:
        try:
            body = response.json()
        except json.JSONDecodeError as exc:
            raise InternalError(f"JMAP {what} response is not JSON") from exc
        if not isinstance(body, dict):
            raise InternalError(f"JMAP {what} response is not an object")
        return body

    # Batching primitive -------------------------------------------------------
    async def _call(self, method_calls: Sequence[list[Any]]) -> dict[str, Any]:
        """POST ``method_calls`` as one request and return the raw envelope."""
        async with self.lock.read():
            if self.api_url is None:
                raise NotConnectedError()
            payload = {"using": list(CAPABILITIES), "methodCalls": list(method_calls)}
            LOGGER.debug(
                "JMAP call: %s", ", ".join(str(call[0]) for call in method_calls)
            )
            try:
                response = await self._client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": self.auth_header},
                )
            except httpx.HTTPError as exc:
                raise NetworkError(f"JMAP call failed: {exc}") from exc

        if not response.is_success:
            raise NetworkError(f"JMAP call failed: HTTP {response.status_code}")
        return self._json(response, "method")

    # Mailboxes and identities -------------------------------------------------
    async def get_mailboxes(self) -> list[Mailbox]:
        """Fetch every mailbox of the account."""
        account_id = self._require_account()
        envelope = await self._call([["Mailbox/get", {"accountId": account_id}, "0"]])
        items = _require_list(_method_result(envelope, 0), "list", "Mailbox/get")

        mailboxes = []
        for item in items:
            if not isinstance(item, dict):
                continue
            role = item.get("role")
            parent_id = item.get("parentId")
            total = item.get("totalEmails")
            unread = item.get("unreadEmails")
            mailboxes.append(
                Mailbox(
                    id=str(item.get("id") or ""),
                    name=str(item.get("name") or ""),
                    role=role if isinstance(role, str) else None,
                    total_emails=total if isinstance(total, int) else 0,
                    unread_emails=unread if isinstance(unread, int) else 0,
                    parent_id=parent_id if isinstance(parent_id, str) else None,
                )
            )
        return mailboxes

    async def refresh_mailboxes(self) -> list[Mailbox]:
        """Fetch mailboxes and rebuild the role cache."""
        mailboxes = await self.get_mailboxes()
        async with self.lock.write():
            self.mailbox_cache = {
                mailbox.role: mailbox for mailbox in mailboxes if mailbox.role
            }
        LOGGER.debug("Cached %d mailbox roles", len(self.mailbox_cache))
        return mailboxes

    async def mailbox_for_role(self, role: str) -> Mailbox:
        """Return the cached mailbox with ``role``, loading the cache once."""
        if not self.mailbox_cache:
            await self.refresh_mailboxes()
        async with self.lock.read():
            for mailbox in self.mailbox_cache.values():
                if mailbox.role == role:
                    return mailbox
        raise InternalError(f"No mailbox with role '{role}'")

    async def get_identities(self) -> list[Identity]:
        """Return sending identities, fetching them on first use."""
        if self.identities is not None:
            return list(self.identities)

        account_id = self._require_account()
        envelope = await self._call([["Identity/get", {"accountId": account_id}, "0"]])
        items = _require_list(_method_result(envelope, 0), "list", "Identity/get")
        identities = [
            Identity(
                id=str(item.get("id") or ""),
                email=str(item.get("email") or ""),
                name=str(item.get("name") or ""),
            )
            for item in items
            if isinstance(item, dict)
        ]

        async with self.lock.write():
            if self.identities is None:
                self.identities = identities
                if self.identity_id is None and identities:
                    self.identity_id = identities[0].id
            return list(self.identities)

    async def get_identity_for_email(self, email: str) -> str | None:
        """Return the id of the identity sending as ``email``, if any."""
        wanted = email.lower()
        for identity in await self.get_identities():
            if identity.email.lower() == wanted:
                return identity.id
        return None

    # Reading ------------------------------------------------------------------
    async def query_emails(
        self,
        mailbox_id: str | None = None,
        limit: int = 50,
        position: int = 0,
        query: ParsedQuery | None = None,
    ) -> list[str]:
        """Return message ids, newest first."""
        account_id = self._require_account()
        arguments = {
            "accountId": account_id,
            "filter": to_jmap_filter(query, mailbox_id),
            "sort": [{"property": "receivedAt", "isAscending": False}],
            "limit": limit,
            "position": position,
        }
        envelope = await self._call([["Email/query", arguments, "0"]])
        ids = _require_list(_method_result(envelope, 0), "ids", "Email/query")
        return [value for value in ids if isinstance(value, str)]

    async def get_emails(
        self,
        ids: Sequence[str],
        fetch_body: bool = False,
        properties: Sequence[str] | None = None,
    ) -> list[Message]:
        """Fetch messages by id, optionally with bodies and attachments."""
        if not ids:
            return []
        account_id = self._require_account()

        requested = list(properties) if properties is not None else list(EMAIL_PROPERTIES)
        if fetch_body:
            requested.extend(BODY_PROPERTIES)

        arguments: dict[str, Any] = {
            "accountId": account_id,
            "ids": list(ids),
            "properties": requested,
            "fetchHTMLBodyValues": fetch_body,
            "fetchTextBodyValues": fetch_body,
            "maxBodyValueBytes": MAX_BODY_VALUE_BYTES,
        }
        if fetch_body:
            arguments["bodyProperties"] = list(BODY_PART_PROPERTIES)

        envelope = await self._call([["Email/get", arguments, "0"]])
        items = _require_list(_method_result(envelope, 0), "list", "Email/get")
        return [parse_email(item, fetch_body) for item in items if isinstance(item, dict)]

    async def get_email(self, email_id: str, fetch_body: bool = False) -> Message:
        """Fetch a single message or raise :class:`NotFoundError`."""
        messages = await self.get_emails([email_id], fetch_body)
        if not messages:
            raise NotFoundError("Email not found")
        return messages[0]

    # Mutations ----------------------------------------------------------------
    async def _update(self, updates: Mapping[str, Any]) -> dict[str, Any]:
        account_id = self._require_account()
        envelope = await self._call(
            [["Email/set", {"accountId": account_id, "update": dict(updates)}, "0"]]
        )
        return _updated_ids(_method_result(envelope, 0))

    async def _update_one(self, email_id: str, patch: Mapping[str, Any]) -> bool:
        if not email_id:
            raise BadRequestError("email id must not be empty")
        updated = await self._update({email_id: dict(patch)})
        if email_id not in updated:
            LOGGER.debug("Server did not confirm update of %s", email_id)
            return False
        return True

    async def mark_read(self, email_id: str) -> bool:
        return await self._update_one(email_id, {"keywords/$seen": True})

    async def mark_unread(self, email_id: str) -> bool:
        return await self._update_one(email_id, {"keywords/$seen": None})

    async def toggle_flag(self, email_id: str) -> bool:
        """Flip ``$flagged`` based on the server's current state."""
        message = await self.get_email(email_id)
        value = None if message.is_flagged else True
        return await self._update_one(email_id, {"keywords/$flagged": value})

    async def archive(self, email_id: str) -> bool:
        return await self.move_to_role(email_id, "archive")

    async def trash(self, email_id: str) -> bool:
        return await self.move_to_role(email_id, "trash")

    async def move_to_role(self, email_id: str, role: str) -> bool:
        """Move a message into the mailbox carrying ``role``."""
        target = await self.mailbox_for_role(role)
        return await self.move_to_mailbox(email_id, target.id)

    async def move_to_mailbox(self, email_id: str, mailbox_id: str) -> bool:
        """Replace a message's mailbox membership with ``mailbox_id``."""
        if not mailbox_id:
            raise BadRequestError("mailbox id must not be empty")
        return await self._update_one(email_id, {"mailboxIds": {mailbox_id: True}})

    async def archive_batch(self, email_ids: Sequence[str]) -> int:
        """Archive many messages in one call; return how many the server updated."""
        if not email_ids:
            return 0
        archive = await self.mailbox_for_role("archive")
        updated = await self._update(
            {email_id: {"mailboxIds": {archive.id: True}} for email_id in email_ids}
        )
        return len(updated)

    async def archive_all_from_sender(self, email_id: str) -> tuple[str, int]:
        """Archive every message from the sender of ``email_id``.

        Returns the sender address and how many messages were archived.
        """
        message = await self.get_email(email_id)
        sender = message.sender[0].email if message.sender else ""
        if not sender:
            raise BadRequestError("No sender found")

        ids = await self.query_emails(
            limit=SENDER_ARCHIVE_LIMIT, query=ParsedQuery(from_=(sender,))
        )
        archived = await self.archive_batch(ids)
        LOGGER.info("Archived %d message(s) from %s", archived, sender)
        return sender, archived

    # Sending ------------------------------------------------------------------
    async def _resolve_identity(self, from_addr: str, override: str | None) -> str:
        if override:
            return override
        matched = await self.get_identity_for_email(from_addr)
        if matched is not None:
            return matched
        if self.identity_id is not None:
            return self.identity_id
        raise InternalError(f"No identity found for {from_addr}")

    async def send_email(
        self,
        submission: OutgoingSubmission,
        from_addr: str | None = None,
        identity_id: str | None = None,
    ) -> str | None:
        """Create a draft and submit it in a single batched request.

        Returns the id of the sent message as reported by the server.
        """
        account_id = self._require_account()
        sender = from_addr or self.username
        resolved_identity = await self._resolve_identity(sender, identity_id)
        drafts = await self.mailbox_for_role("drafts")

        draft = build_draft_email(submission, sender, drafts.id)
        envelope = await self._call(
            [
                ["Email/set", {"accountId": account_id, "create": {"draft": draft}}, "0"],
                [
                    "EmailSubmission/set",
                    {
                        "accountId": account_id,
                        "create": {
                            "send": {
                                "emailId": "#draft",
                                "identityId": resolved_identity,
                                "envelope": {
                                    "mailFrom": {"email": sender},
                                    "rcptTo": envelope_recipients(submission),
                                },
                            }
                        },
                    },
                    "1",
                ],
            ]
        )

        email_result = _method_result(envelope, 0)
        created_email = (email_result.get("created") or {}).get("draft")
        if not created_email:
            detail = _rejection_detail(envelope, 0, email_result)
            raise InternalError(f"Email creation failed: {json.dumps(detail)}")

        submission_result = _method_result(envelope, 1)
        created_submission = (submission_result.get("created") or {}).get("send")
        if not created_submission:
            detail = _rejection_detail(envelope, 1, submission_result)
            raise InternalError(f"Email submission failed: {json.dumps(detail)}")

        LOGGER.info("Submitted message with subject %r", submission.subject)
        email_id = created_submission.get("emailId") or created_email.get("id")
        return email_id if isinstance(email_id, str) else None

    # Blobs --------------------------------------------------------------------
    def _download_location(self, blob_id: str, name: str, mime_type: str) -> str:
        account_id = self._require_account()
        if self.download_url is None:
            raise NotConnectedError()
        return (
            self.download_url.replace("{accountId}", quote(account_id, safe=""))
            .replace("{blobId}", quote(blob_id, safe=""))
            .replace("{name}", quote(name, safe=""))
            .replace("{type}", quote(mime_type, safe=""))
        )

    async def _get(self, url: str) -> httpx.Response:
        async with self.lock.read():
            try:
                return await self._client.get(
                    url, headers={"Authorization": self.auth_header}
                )
            except httpx.HTTPError as exc:
                raise NetworkError(f"Download failed: {exc}") from exc

    async def get_calendar_data(self, email_id: str) -> str | None:
        """Download the raw calendar part of a message, if it has one."""
        account_id = self._require_account()
        envelope = await self._call(
            [
                [
                    "Email/get",
                    {
                        "accountId": account_id,
                        "ids": [email_id],
                        "properties": ["bodyStructure"],
                        "bodyProperties": ["partId", "blobId", "type", "name", "subParts"],
                    },
                    "0",
                ]
            ]
        )
        items = _require_list(_method_result(envelope, 0), "list", "Email/get")
        if not items:
            raise NotFoundError("Email not found")

        first = items[0] if isinstance(items[0], dict) else {}
        blob_id = find_calendar_blob_id(first.get("bodyStructure"))
        if blob_id is None:
            return None

        response = await self._get(
            self._download_location(blob_id, "invite.ics", "text/calendar")
        )
        if not response.is_success:
            LOGGER.debug(
                "Calendar blob %s download returned HTTP %s",
                blob_id,
                response.status_code,
            )
            return None
        return response.text

    async def download_blob(
        self, blob_id: str, name: str, mime_type: str = "application/octet-stream"
    ) -> tuple[str, bytes]:
        """Return ``(content_type, data)`` for an attachment blob."""
        if not is_safe_path_segment(blob_id) or not is_safe_path_segment(name):
            raise BadRequestError("Invalid blob_id or filename")
        response = await self._get(self._download_location(blob_id, name, mime_type))
        if not response.is_success:
            raise NotFoundError("Attachment not found")
        content_type = response.headers.get("content-type", "application/octet-stream")
        return content_type, response.content

    async def upload_blob(
        self,
        data: bytes,
        mime_type: str = "application/octet-stream",
        filename: str = "attachment",
    ) -> UploadedBlob:
        """Upload binary content so it can be referenced as an attachment."""
        if len(data) > MAX_UPLOAD_BYTES:
            raise BadRequestError(
                f"File too large ({len(data)} bytes, max {MAX_UPLOAD_BYTES})"
            )
        account_id = self._require_account()
        if self.upload_url is None:
            raise NotConnectedError()
        url = self.upload_url.replace("{accountId}", quote(account_id, safe=""))

        async with self.lock.read():
            try:
                response = await self._client.post(
                    url,
                    content=data,
                    headers={
                        "Authorization": self.auth_header,
                        "Content-Type": mime_type,
                    },
                )
            except httpx.HTTPError as exc:
                raise NetworkError(f"Upload failed: {exc}") from exc

        if not response.is_success:
            raise InternalError(
                f"Upload failed ({response.status_code}): {response.text}"
            )
        body = self._json(response, "upload")
        blob_id = body.get("blobId")
        if not isinstance(blob_id, str):
            raise InternalError("Missing blobId in upload response")
        size = body.get("size")
        return UploadedBlob(
            blob_id=blob_id,
            name=sanitize_filename(filename),
            mime_type=mime_type,
            size=size if isinstance(size, int) else 0,
        )


__all__ = [
    "CAPABILITIES",
    "JmapSession",
    "MAX_UPLOAD_BYTES",
    "is_safe_path_segment",
    "sanitize_filename",
]
