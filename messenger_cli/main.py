from __future__ import annotations

import asyncio
import logging

from messenger_cli.core.logging import configure_logging
from messenger_cli.core.settings import Settings, get_settings
from messenger_cli.services.image_cache import ImageCache
from messenger_cli.services.session_store import SessionStore
from messenger_cli.services.thread_store import ThreadStore
from messenger_cli.shell.prompts import Prompter
from messenger_cli.shell.repl import Shell
from messenger_cli.transport.http_client import HttpTransport
from messenger_cli.transport.media import MediaFetcher

logger = logging.getLogger(__name__)


async def run(settings: Settings) -> None:
    logger.info("Client startup started server_url=%s", settings.server_url)
    session_store = SessionStore(settings.state_file)
    transport = HttpTransport(
        base_url=settings.api_base_url,
        timeout=settings.request_timeout_sec,
        poll_interval_sec=settings.poll_interval_sec,
        on_state_change=session_store.write,
    )
    fetcher = MediaFetcher(timeout=settings.request_timeout_sec)
    shell = Shell(
        settings=settings,
        transport=transport,
        store=ThreadStore(transport),
        image_cache=ImageCache(settings.cache_dir, fetcher),
        session_store=session_store,
        prompter=Prompter(),
    )
    try:
        await shell.run()
    finally:
        await transport.aclose()
        await fetcher.aclose()
        logger.info("Client shutdown completed")


def main() -> None:
    settings = get_settings()
    settings.ensure_directories()
    configure_logging(debug=settings.debug, log_file=settings.log_file)
    asyncio.run(run(settings))
