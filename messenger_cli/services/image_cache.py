from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import shutil
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Protocol

from PIL import Image

from messenger_cli.core.errors import RenderError, TransportError
from messenger_cli.services.ascii_art import render_ascii
from messenger_cli.transport.media import MediaResponse

logger = logging.getLogger(__name__)


CANONICAL_FORMAT = "PNG"
CANONICAL_SUFFIX = ".png"
VIEWPORT_COLUMN_MARGIN = 8
VIEWPORT_ROW_MARGIN = 10

_IMAGE_ERRORS = (OSError, ValueError, Image.DecompressionBombError)


class Fetcher(Protocol):
    async def get(self, url: str) -> MediaResponse: ...


def cache_key(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class ImageCache:
    """Renders image URLs as ASCII art, caching the normalized image on disk.

    Artifacts are named ``<sha256(url)>.png`` and never invalidated, so a URL
    is downloaded at most once no matter what the remote serves later.
    """

    def __init__(
        self,
        cache_dir: Path,
        fetcher: Fetcher,
        *,
        terminal_size: Callable[[], os.terminal_size] | None = None,
    ) -> None:
        self.cache_dir = cache_dir
        self._fetcher = fetcher
        self._terminal_size = terminal_size or shutil.get_terminal_size
        # Per-key download locks, dropped once no caller holds or awaits them.
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._key_users: dict[str, int] = {}

    def artifact_path(self, url: str) -> Path:
        return self.cache_dir / f"{cache_key(url)}{CANONICAL_SUFFIX}"

    def viewport(self) -> tuple[int, int]:
        size = self._terminal_size()
        return max(size.columns - VIEWPORT_COLUMN_MARGIN, 1), max(size.lines - VIEWPORT_ROW_MARGIN, 1)

    async def resolve(self, url: str | None) -> str:
        if not url:
            return ""

        key = cache_key(url)
        try:
            async with self._key_lock(key):
                path = await self._materialize(url, key)
            columns, rows = self.viewport()
            ascii_art = await asyncio.to_thread(self._render_file, path, columns, rows)
        except RenderError as exc:
            logger.warning("Image render failed url=%s code=%s message=%s", url, exc.code, exc.message)
            return ""
        return f"{url}\n\n{ascii_art}"

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        self._key_users[key] = self._key_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._key_users[key] -= 1
            if not self._key_users[key]:
                del self._key_users[key]
                del self._key_locks[key]

    async def _materialize(self, url: str, key: str) -> Path:
        path = self.cache_dir / f"{key}{CANONICAL_SUFFIX}"
        if await asyncio.to_thread(path.is_file):
            logger.debug("Image cache hit key=%s", key)
            return path

        logger.debug("Image cache miss key=%s url=%s", key, url)
        try:
            response = await self._fetcher.get(url)
        except TransportError as exc:
            raise RenderError(code="fetch_failed", message=exc.message, details={"url": url}) from exc

        try:
            await asyncio.to_thread(self._normalize, response.content, key, path)
        except _IMAGE_ERRORS as exc:
            raise RenderError(code="decode_failed", message=str(exc), details={"url": url}) from exc
        logger.info("Image cached key=%s content_type=%s", key, response.content_type)
        return path

    def _normalize(self, content: bytes, key: str, path: Path) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        download_path = self.cache_dir / f"{key}.download"
        tmp_path = self.cache_dir / f"{key}{CANONICAL_SUFFIX}.tmp"
        try:
            download_path.write_bytes(content)
            with Image.open(download_path) as image:
                source_format = image.format
                if source_format != CANONICAL_FORMAT:
                    image.convert("RGB").save(tmp_path, format=CANONICAL_FORMAT)
                else:
                    image.verify()

            if source_format == CANONICAL_FORMAT:
                os.replace(download_path, path)
            else:
                os.replace(tmp_path, path)
            logger.debug("Image normalized key=%s source_format=%s", key, source_format)
        finally:
            download_path.unlink(missing_ok=True)
            tmp_path.unlink(missing_ok=True)

    @staticmethod
    def _render_file(path: Path, columns: int, rows: int) -> str:
        try:
            with Image.open(path) as image:
                image.load()
                return render_ascii(image, columns=columns, rows=rows)
        except _IMAGE_ERRORS as exc:
            raise RenderError(code="render_failed", message=str(exc), details={"path": str(path)}) from exc
