from __future__ import annotations

import asyncio
import logging
import re

from messenger_cli.core.errors import ValidationError, thread_not_found
from messenger_cli.schemas import Friend, Message, Thread
from messenger_cli.transport.base import Transport

logger = logging.getLogger(__name__)


DEFAULT_THREAD_LIMIT = 50
DEFAULT_PAGE_SIZE = 50
DISPLAY_NAME_MAX_LENGTH = 50


def truncate(text: str, max_length: int = DISPLAY_NAME_MAX_LENGTH) -> str:
    if len(text) > max_length:
        return text[: max_length - 3] + "..."
    return text


class ThreadStore:
    """Client-side view of conversation threads and their loaded history.

    Three sources feed the store: bulk thread loads, per-thread page fetches
    and pushed messages. Remote calls are awaited outside ``_lock``; every
    in-memory mutation happens under it, so merges apply one at a time and
    the ordering invariants hold between awaits:

    * message lists are unique by ``message_id`` and sorted ascending by
      ``timestamp``;
    * ``snippet``/``timestamp`` of a loaded thread mirror its last message;
    * ``threads`` is sorted descending by ``timestamp``.
    """

    def __init__(self, transport: Transport, *, current_user_id: str | None = None) -> None:
        self._transport = transport
        self._current_user_id = current_user_id
        self._lock = asyncio.Lock()
        self.threads: list[Thread] = []
        self.friends: list[Friend] = []

    @property
    def current_user_id(self) -> str | None:
        return self._current_user_id or self._transport.current_user_id

    async def load_threads(self, limit: int = DEFAULT_THREAD_LIMIT) -> list[Thread]:
        logger.debug("Loading threads limit=%s", limit)
        summaries = await self._transport.fetch_thread_list(0, limit)

        threads: dict[str, Thread] = {}
        for summary in summaries:
            threads.setdefault(summary.thread_id, Thread.from_summary(summary))

        async with self._lock:
            self.threads = list(threads.values())
            self._sort_threads()
        logger.info("Loaded threads count=%s", len(self.threads))
        return list(self.threads)

    async def load_friends(self) -> list[Friend]:
        logger.debug("Loading friends")
        friends = await self._transport.fetch_friend_list()
        async with self._lock:
            self.friends = list(friends)
        logger.info("Loaded friends count=%s", len(self.friends))
        return list(self.friends)

    async def refresh(self, limit: int = DEFAULT_THREAD_LIMIT) -> list[Thread]:
        await asyncio.gather(self.load_threads(limit), self.load_friends())
        self.link_friends()
        return list(self.threads)

    def link_friends(self) -> None:
        friends_by_id = {friend.user_id: friend for friend in self.friends}
        current_user_id = self.current_user_id
        for thread in self.threads:
            thread.friends = [
                friends_by_id[user_id] for user_id in sorted(thread.participants) if user_id in friends_by_id
            ]
            thread.is_self = len(thread.participants) == 1 and current_user_id in thread.participants
        logger.debug("Linked friends threads=%s friends=%s", len(self.threads), len(self.friends))

    def get(self, thread_id: str) -> Thread:
        for thread in self.threads:
            if thread.thread_id == thread_id:
                return thread
        raise thread_not_found(thread_id)

    async def fetch_page(self, thread_id: str, limit: int = DEFAULT_PAGE_SIZE) -> Thread:
        self.get(thread_id)
        logger.debug("Fetching page thread_id=%s limit=%s", thread_id, limit)
        messages = await self._transport.fetch_thread_history(thread_id, 0, limit)

        async with self._lock:
            thread = self.get(thread_id)
            unique: dict[str, Message] = {}
            for message in messages:
                unique.setdefault(message.message_id, self._with_sender_name(message, thread_id))
            thread.messages = sorted(unique.values(), key=lambda item: item.timestamp)
            self._recompute_derived(thread)
            self._sort_threads()
        logger.info("Fetched page thread_id=%s messages=%s", thread_id, len(thread.messages))
        return thread

    async def merge_incoming(self, message: Message, thread_id: str) -> Thread:
        async with self._lock:
            thread = self.get(thread_id)
            if thread.messages is not None:
                if any(existing.message_id == message.message_id for existing in thread.messages):
                    logger.debug("Duplicate message ignored thread_id=%s message_id=%s", thread_id, message.message_id)
                    return thread

                thread.messages.append(self._with_sender_name(message, thread_id))
                thread.messages.sort(key=lambda item: item.timestamp)
                self._recompute_derived(thread)
                self._sort_threads()
                logger.debug("Merged message thread_id=%s message_id=%s", thread_id, message.message_id)
                return thread

        logger.debug("Thread has no loaded history; fetching page thread_id=%s", thread_id)
        return await self.fetch_page(thread_id)

    async def send_message(self, body: str | None, thread_id: str) -> Message | None:
        if body is None or not body.strip():
            raise ValidationError(code="empty_message", message="Message body cannot be empty")
        self.get(thread_id)

        sent = await self._transport.send_message(body, thread_id)
        if sent is None:
            return None
        await self.merge_incoming(sent, thread_id)
        return sent

    def search(self, term: str | None = None) -> list[Thread]:
        if not term:
            return list(self.threads)

        try:
            pattern = re.compile(term, re.IGNORECASE)
        except re.error:
            pattern = re.compile(re.escape(term), re.IGNORECASE)

        return [
            thread
            for thread in self.threads
            if pattern.search(self.display_name(thread))
            or any(pattern.search(friend.full_name) for friend in thread.friends)
        ]

    @staticmethod
    def display_name(thread: Thread) -> str:
        if thread.is_self:
            return "Me"
        if thread.name:
            return thread.name
        return truncate(", ".join(friend.full_name for friend in thread.friends))

    def has_message(self, thread_id: str, message_id: str) -> bool:
        for thread in self.threads:
            if thread.thread_id == thread_id:
                return any(message.message_id == message_id for message in thread.messages or [])
        return False

    def friend_name(self, user_id: str) -> str | None:
        for friend in self.friends:
            if friend.user_id == user_id:
                return friend.full_name
        return None

    def _with_sender_name(self, message: Message, thread_id: str) -> Message:
        updates: dict[str, object] = {}
        if not message.sender_name:
            sender_name = self.friend_name(message.sender_id)
            if sender_name is not None:
                updates["sender_name"] = sender_name
        if message.thread_id is None:
            updates["thread_id"] = thread_id
        if not updates:
            return message
        return message.model_copy(update=updates)

    @staticmethod
    def _recompute_derived(thread: Thread) -> None:
        if not thread.messages:
            return
        last = thread.messages[-1]
        thread.snippet = last.body or ""
        thread.timestamp = last.timestamp

    def _sort_threads(self) -> None:
        self.threads.sort(key=lambda item: item.timestamp, reverse=True)
