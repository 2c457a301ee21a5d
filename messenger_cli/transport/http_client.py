from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime

import httpx

from messenger_cli.core.errors import TransportError
from messenger_cli.schemas import Attachment, Friend, Message, ThreadSummary

logger = logging.getLogger(__name__)

StateListener = Callable[[bytes], Awaitable[None]]
Change = tuple[str, int, Message | None]

# Largest page the server's message listing accepts.
HISTORY_PAGE_SIZE = 100


def _to_epoch_ms(value: object) -> int:
    if not isinstance(value, str) or not value:
        return 0
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise TransportError(code="invalid_response", message=f"Malformed timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def _error_from_response(response: httpx.Response) -> TransportError:
    code = "http_error"
    message = f"Request failed with status {response.status_code}"
    details: object | None = None
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        error = payload["error"]
        code = str(error.get("code") or code)
        message = str(error.get("message") or message)
        details = error.get("details")
    return TransportError(code=code, message=message, status_code=response.status_code, details=details)


def _message_from_payload(item: dict[str, object], users_by_id: dict[str, str] | None = None) -> Message:
    sender_id = str(item.get("sender_id") or "")
    sender_name = None
    if users_by_id is not None:
        sender_name = users_by_id.get(sender_id)
    return Message(
        message_id=str(item["id"]),
        thread_id=str(item["conversation_id"]) if item.get("conversation_id") else None,
        sender_id=sender_id,
        sender_name=sender_name,
        body=item.get("content") if isinstance(item.get("content"), str) else None,
        attachments=_attachments_from_payload(item.get("attachments")),
        timestamp=_to_epoch_ms(item.get("created_at")),
    )


def _attachments_from_payload(raw: object) -> list[Attachment]:
    if not isinstance(raw, list):
        return []
    return [Attachment.from_raw(item) for item in raw if isinstance(item, Mapping)]


def _users_by_id(users: object) -> dict[str, str]:
    if not isinstance(users, list):
        return {}
    result: dict[str, str] = {}
    for user in users:
        if isinstance(user, dict) and isinstance(user.get("id"), str):
            result[user["id"]] = str(user.get("display_name") or user.get("username") or user["id"])
    return result


class HttpTransport:
    """Client for the messenger server REST API (``/v1``)."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 10.0,
        poll_interval_sec: float = 2.0,
        client: httpx.AsyncClient | None = None,
        on_state_change: StateListener | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._poll_interval_sec = poll_interval_sec
        self._on_state_change = on_state_change
        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._current_user_id: str | None = None

    @property
    def current_user_id(self) -> str | None:
        return self._current_user_id

    def export_state(self) -> bytes:
        if self._access_token is None or self._refresh_token is None:
            raise TransportError(code="not_authenticated", message="No session to export")
        state = {"access_token": self._access_token, "refresh_token": self._refresh_token}
        return json.dumps(state, separators=(",", ":")).encode("utf-8")

    async def aclose(self) -> None:
        await self._client.aclose()
        logger.debug("HTTP transport closed")

    async def login(self, username: str, password: str) -> None:
        logger.info("Login attempt username=%s", username)
        data = await self._request(
            "POST",
            "/auth/login",
            json_body={"username": username, "password": password},
            authenticated=False,
        )
        await self._apply_auth_response(data)
        logger.info("Login succeeded user_id=%s", self._current_user_id)

    async def login_from_state(self, state: bytes) -> None:
        try:
            decoded = json.loads(state)
        except ValueError as exc:
            raise TransportError(code="invalid_session_state", message="Stored session is unreadable") from exc
        if not isinstance(decoded, dict) or not decoded.get("access_token") or not decoded.get("refresh_token"):
            raise TransportError(code="invalid_session_state", message="Stored session is incomplete")

        self._access_token = str(decoded["access_token"])
        self._refresh_token = str(decoded["refresh_token"])
        me = await self._request("GET", "/users/me")
        if not isinstance(me, dict) or not isinstance(me.get("id"), str):
            raise TransportError(code="invalid_response", message="Malformed user payload")
        self._current_user_id = me["id"]
        logger.info("Login from stored session succeeded user_id=%s", self._current_user_id)

    async def fetch_thread_list(self, offset: int, limit: int) -> list[ThreadSummary]:
        logger.debug("Fetching thread list offset=%s limit=%s", offset, limit)
        data = await self._request("GET", "/conversations")
        if not isinstance(data, list):
            raise TransportError(code="invalid_response", message="Malformed conversation list")

        summaries = [
            ThreadSummary(
                thread_id=str(item["id"]),
                participants=[str(member_id) for member_id in item.get("member_ids") or []],
                snippet=item.get("last_message_preview") or "",
                timestamp=_to_epoch_ms(item.get("last_message_at") or item.get("updated_at")),
            )
            for item in data
            if isinstance(item, dict) and item.get("id")
        ]
        return summaries[offset : offset + limit]

    async def fetch_friend_list(self) -> list[Friend]:
        logger.debug("Fetching friend list")
        data = await self._request("GET", "/sync/bootstrap")
        if not isinstance(data, dict):
            raise TransportError(code="invalid_response", message="Malformed bootstrap payload")
        return [
            Friend(user_id=user_id, full_name=full_name)
            for user_id, full_name in _users_by_id(data.get("users")).items()
            if user_id != self._current_user_id
        ]

    async def fetch_thread_history(self, thread_id: str, offset: int, limit: int) -> list[Message]:
        """Return up to ``limit`` messages, skipping the ``offset`` newest ones.

        The server only pages forward from a seq cursor, so the thread is
        walked from the start and only the tail window is kept.
        """
        logger.debug("Fetching thread history thread_id=%s offset=%s limit=%s", thread_id, offset, limit)
        window: deque[Message] = deque(maxlen=offset + limit)
        after_seq = 0
        pages = 0
        while True:
            data = await self._request(
                "GET",
                f"/conversations/{thread_id}/messages",
                params={"after_seq": after_seq, "limit": HISTORY_PAGE_SIZE},
            )
            if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
                raise TransportError(code="invalid_response", message="Malformed message list")
            pages += 1

            items = [item for item in data["messages"] if isinstance(item, dict)]
            window.extend(_message_from_payload(item) for item in items)
            seqs = [item["seq"] for item in items if isinstance(item.get("seq"), int)]
            if len(items) < HISTORY_PAGE_SIZE or not seqs or max(seqs) <= after_seq:
                break
            after_seq = max(seqs)

        messages = list(window)
        logger.debug("Fetched thread history thread_id=%s pages=%s messages=%s", thread_id, pages, len(messages))
        return messages[: max(len(messages) - offset, 0)]

    async def send_message(self, body: str, thread_id: str) -> Message | None:
        client_message_id = uuid.uuid4().hex
        logger.info("Sending message thread_id=%s client_message_id=%s", thread_id, client_message_id)
        data = await self._request(
            "POST",
            f"/conversations/{thread_id}/messages",
            json_body={"client_message_id": client_message_id, "content": body},
        )
        if not isinstance(data, dict) or not data.get("id"):
            return None
        return _message_from_payload(data)

    async def fetch_changes(self, after_seq_by_thread: dict[str, int]) -> list[Change]:
        """Messages past the given cursors as ``(thread_id, seq, message)``.

        ``message`` is ``None`` for an item that could not be decoded; its seq
        is still reported so the cursor moves past it.
        """
        params = {}
        if after_seq_by_thread:
            params["after_seq_by_conversation"] = json.dumps(after_seq_by_thread, separators=(",", ":"))
        data = await self._request("GET", "/sync/changes", params=params)
        if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
            raise TransportError(code="invalid_response", message="Malformed changes payload")

        users_by_id = _users_by_id(data.get("users"))
        changes: list[Change] = []
        for item in data["messages"]:
            if not isinstance(item, dict) or not isinstance(item.get("seq"), int) or not item.get("conversation_id"):
                continue
            thread_id = str(item["conversation_id"])
            try:
                message = _message_from_payload(item, users_by_id)
            except TransportError as exc:
                logger.warning(
                    "Undecodable change skipped thread_id=%s seq=%s message=%s", thread_id, item["seq"], exc.message
                )
                message = None
            changes.append((thread_id, item["seq"], message))
        return changes

    def subscribe_incoming(self) -> PollingSubscription:
        return PollingSubscription(self, poll_interval_sec=self._poll_interval_sec)

    async def _apply_auth_response(self, data: object) -> None:
        if not isinstance(data, dict):
            raise TransportError(code="invalid_response", message="Malformed authentication payload")
        tokens = data.get("tokens")
        user = data.get("user")
        if not isinstance(tokens, dict) or not isinstance(user, dict):
            raise TransportError(code="invalid_response", message="Malformed authentication payload")

        self._access_token = str(tokens["access_token"])
        self._refresh_token = str(tokens["refresh_token"])
        self._current_user_id = str(user["id"])
        if self._on_state_change is not None:
            await self._on_state_change(self.export_state())

    async def _refresh_session(self) -> None:
        logger.info("Refreshing session tokens")
        data = await self._request(
            "POST",
            "/auth/refresh",
            json_body={"refresh_token": self._refresh_token},
            authenticated=False,
        )
        await self._apply_auth_response(data)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, object] | None = None,
        json_body: object | None = None,
        authenticated: bool = True,
        allow_refresh: bool = True,
    ) -> object:
        headers: dict[str, str] = {}
        if authenticated:
            if self._access_token is None:
                raise TransportError(code="not_authenticated", message="Login required")
            headers["Authorization"] = f"Bearer {self._access_token}"

        try:
            response = await self._client.request(method, path, params=params, json=json_body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("HTTP request failed method=%s path=%s error=%s", method, path, exc)
            raise TransportError(code="network_error", message=str(exc) or exc.__class__.__name__) from exc

        if response.status_code == 401 and authenticated and allow_refresh and self._refresh_token:
            logger.debug("Access token rejected; refreshing path=%s", path)
            await self._refresh_session()
            return await self._request(method, path, params=params, json_body=json_body, allow_refresh=False)

        if response.is_error:
            error = _error_from_response(response)
            logger.warning(
                "HTTP request rejected method=%s path=%s status=%s code=%s",
                method,
                path,
                response.status_code,
                error.code,
            )
            raise error

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(code="invalid_response", message="Response is not JSON") from exc
        if not isinstance(payload, dict):
            raise TransportError(code="invalid_response", message="Response envelope is not an object")
        return payload.get("data")


class PollingSubscription:
    """Push stream built on ``/sync/changes`` with a per-thread seq cursor."""

    def __init__(self, transport: HttpTransport, *, poll_interval_sec: float) -> None:
        self._transport = transport
        self._poll_interval_sec = poll_interval_sec
        self._cursors: dict[str, int] = {}
        self._pending: deque[Message] = deque()
        self._closed = asyncio.Event()
        self._primed = False
        self._wait_before_poll = False

    def __aiter__(self) -> PollingSubscription:
        return self

    async def __anext__(self) -> Message:
        while True:
            if self._pending:
                return self._pending.popleft()
            if self._closed.is_set():
                raise StopAsyncIteration
            if self._wait_before_poll:
                try:
                    await asyncio.wait_for(self._closed.wait(), timeout=self._poll_interval_sec)
                except TimeoutError:
                    pass
                if self._closed.is_set():
                    raise StopAsyncIteration

            try:
                changes = await self._transport.fetch_changes(self._cursors)
            except TransportError as exc:
                logger.warning("Polling for changes failed code=%s message=%s", exc.code, exc.message)
                self._wait_before_poll = True
                continue

            for thread_id, seq, _ in changes:
                self._cursors[thread_id] = max(seq, self._cursors.get(thread_id, 0))

            if not self._primed:
                # Existing history is skipped until the cursors reach the head.
                self._primed = not changes
                self._wait_before_poll = self._primed
                if self._primed:
                    logger.debug("Change cursors primed threads=%s", len(self._cursors))
                continue

            self._wait_before_poll = True
            self._pending.extend(message for _, _, message in changes if message is not None)

    async def close(self) -> None:
        self._closed.set()
