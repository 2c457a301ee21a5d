from __future__ import annotations

import html
import logging
import re
from collections.abc import Callable
from datetime import datetime

from messenger_cli.schemas import Attachment, Message, Thread
from messenger_cli.services.image_cache import ImageCache
from messenger_cli.services.thread_store import DEFAULT_PAGE_SIZE, ThreadStore, truncate

logger = logging.getLogger(__name__)

PrintLine = Callable[[str], None]

WRAP_WIDTH = 70
INDENT = "    "

# Code points XML 1.0 forbids; prompt_toolkit HTML markup cannot carry them.
_XML_ILLEGAL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def escape(text: str) -> str:
    return html.escape(_XML_ILLEGAL.sub("", text), quote=False)


def split_long_text(text: str, width: int = WRAP_WIDTH) -> list[str]:
    """Split ``text`` into lines of about ``width`` characters.

    Lines are only broken on whitespace, so a line runs past ``width`` until
    the next space; the breaking space itself is dropped.
    """
    lines: list[str] = []
    line = ""
    for letter in text:
        if len(line) < width or not letter.isspace():
            line += letter
        else:
            lines.append(line)
            line = ""
    if line:
        lines.append(line)
    return lines


def format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000).strftime("%X")


async def attachment_text(attachment: Attachment, image_cache: ImageCache) -> str:
    pretext = f"{INDENT}{escape(attachment.description)}\n\n" if attachment.description else "\n"
    ascii_art = await image_cache.resolve(attachment.url)
    indented = "\n".join(f"{INDENT}{line}" for line in ascii_art.split("\n"))
    return pretext + escape(indented)


async def message_to_string(message: Message, my_id: str | None, image_cache: ImageCache) -> str | None:
    """Markup for one message, or ``None`` for status events with nothing to show."""
    if not message.is_printable:
        return None

    attachments = []
    for attachment in message.attachments:
        attachments.append(await attachment_text(attachment, image_cache))

    if my_id is not None and message.sender_id == my_id:
        sender = "<ansiblue><b>Me</b></ansiblue>"
    else:
        sender = f"<b>{escape(message.sender_name or message.sender_id)}</b>"
    text = f"{sender} (<ansigreen>{format_timestamp(message.timestamp)}</ansigreen>)\n"

    if message.body:
        wrapped = f"\n{INDENT}".join(
            f"\n{INDENT}".join(split_long_text(paragraph)) for paragraph in message.body.split("\n")
        )
        text += f"  &gt; {escape(wrapped)}\n"

    for attachment in attachments:
        text += f"{attachment}\n"
    return text


def thread_choice_label(index: int, thread: Thread) -> str:
    snippet = " ".join(line for line in thread.snippet.split("\n") if line)
    name = ThreadStore.display_name(thread)
    return f"{index}. <b>{escape(name)}</b>: {escape(truncate(snippet))}"


async def print_thread(
    store: ThreadStore,
    thread: Thread,
    *,
    image_cache: ImageCache,
    print_line: PrintLine,
    limit: int | None = None,
) -> Thread:
    if thread.messages is None or (limit and len(thread.messages) < limit):
        thread = await store.fetch_page(thread.thread_id, limit or DEFAULT_PAGE_SIZE)

    my_id = store.current_user_id
    messages = list(thread.messages or [])
    logger.debug("Printing thread thread_id=%s messages=%s", thread.thread_id, len(messages))
    # Each message is printed before the next one is formatted.
    for message in messages:
        text = await message_to_string(message, my_id, image_cache)
        if text is None:
            continue
        print_line(text)
    return thread
