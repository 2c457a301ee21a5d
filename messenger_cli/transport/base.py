from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from messenger_cli.schemas import Friend, Message, ThreadSummary


class Subscription(Protocol):
    """Lazy, non-restartable stream of pushed messages.

    Iteration never ends on its own; ``close()`` stops it and makes any
    pending ``__anext__`` raise ``StopAsyncIteration``. Delivery is
    at-least-once and unordered, so consumers must tolerate duplicates.
    """

    def __aiter__(self) -> AsyncIterator[Message]: ...

    async def close(self) -> None: ...


class Transport(Protocol):
    @property
    def current_user_id(self) -> str | None: ...

    async def fetch_thread_list(self, offset: int, limit: int) -> list[ThreadSummary]: ...

    async def fetch_friend_list(self) -> list[Friend]: ...

    async def fetch_thread_history(self, thread_id: str, offset: int, limit: int) -> list[Message]: ...

    async def send_message(self, body: str, thread_id: str) -> Message | None: ...

    def subscribe_incoming(self) -> Subscription: ...
