from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class SessionStore:
    """Opaque session blob kept at a fixed per-user path."""

    def __init__(self, path: Path) -> None:
        self.path = path

    async def read(self) -> bytes | None:
        try:
            data = await asyncio.to_thread(self.path.read_bytes)
        except FileNotFoundError:
            logger.debug("No stored session path=%s", self.path)
            return None
        logger.debug("Stored session loaded path=%s", self.path)
        return data

    async def write(self, state: bytes) -> None:
        await asyncio.to_thread(self._write_sync, state)
        logger.debug("Stored session written path=%s", self.path)

    async def clear(self) -> None:
        try:
            await asyncio.to_thread(self.path.unlink)
        except FileNotFoundError:
            return
        logger.info("Stored session removed path=%s", self.path)

    def _write_sync(self, state: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        tmp_path.write_bytes(state)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
