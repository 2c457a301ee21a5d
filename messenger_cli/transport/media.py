from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from messenger_cli.core.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class MediaResponse:
    content: bytes
    content_type: str | None


class MediaFetcher:
    def __init__(self, *, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def get(self, url: str) -> MediaResponse:
        logger.debug("Fetching media url=%s", url)
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise TransportError(code="network_error", message=str(exc) or exc.__class__.__name__) from exc

        if response.is_error:
            raise TransportError(
                code="media_unavailable",
                message=f"Media request failed with status {response.status_code}",
                status_code=response.status_code,
                details={"url": url},
            )
        logger.debug("Fetched media url=%s bytes=%s", url, len(response.content))
        return MediaResponse(content=response.content, content_type=response.headers.get("content-type"))

    async def aclose(self) -> None:
        await self._client.aclose()
