from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from messenger_cli.core.errors import NotFoundError, TransportError
from messenger_cli.schemas import Message, Thread
from messenger_cli.services.thread_store import ThreadStore
from messenger_cli.transport.base import Subscription, Transport

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Thread, Message], Awaitable[None] | None]


class IncomingListener:
    """Single consumer that folds pushed messages into a ``ThreadStore``.

    Events are merged strictly one at a time in arrival order; the next event
    is not pulled from the subscription until the previous merge settled.
    """

    def __init__(
        self,
        *,
        store: ThreadStore,
        transport: Transport,
        on_message: MessageCallback | None = None,
    ) -> None:
        self._store = store
        self._transport = transport
        self._on_message = on_message
        self._subscription: Subscription | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is not None:
            await self.stop()
        self._subscription = self._transport.subscribe_incoming()
        self._task = asyncio.create_task(self._run(self._subscription))
        logger.info("Incoming listener started")

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._subscription is not None:
            await self._subscription.close()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._subscription = None
        logger.info("Incoming listener stopped")

    async def _run(self, subscription: Subscription) -> None:
        try:
            async for message in subscription:
                await self.handle(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Incoming listener crashed")
            raise

    async def handle(self, message: Message) -> Thread | None:
        if message.thread_id is None:
            logger.warning("Incoming message without thread dropped message_id=%s", message.message_id)
            return None

        duplicate = self._store.has_message(message.thread_id, message.message_id)
        try:
            thread = await self._store.merge_incoming(message, message.thread_id)
        except NotFoundError:
            logger.warning(
                "Incoming message for unknown thread dropped thread_id=%s message_id=%s",
                message.thread_id,
                message.message_id,
            )
            return None
        except TransportError as exc:
            logger.warning(
                "Incoming message could not be merged thread_id=%s code=%s message=%s",
                message.thread_id,
                exc.code,
                exc.message,
            )
            return None

        if duplicate:
            return thread

        if self._on_message is not None:
            result = self._on_message(thread, message)
            if asyncio.iscoroutine(result):
                await result
        return thread
