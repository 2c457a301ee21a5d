from __future__ import annotations

import asyncio

import httpx
import pytest

from messenger_cli.core.errors import TransportError
from messenger_cli.transport.media import MediaFetcher


def _fetcher(handler) -> MediaFetcher:
    return MediaFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_get_returns_content_and_type():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})

    async def scenario():
        fetcher = _fetcher(handler)
        try:
            return await fetcher.get("http://cdn.test/a.png")
        finally:
            await fetcher.aclose()

    response = asyncio.run(scenario())

    assert response.content == b"\x89PNG"
    assert response.content_type == "image/png"


def test_error_status_is_media_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    async def scenario() -> None:
        fetcher = _fetcher(handler)
        try:
            await fetcher.get("http://cdn.test/missing.png")
        finally:
            await fetcher.aclose()

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.code == "media_unavailable"
    assert exc_info.value.status_code == 404
    assert exc_info.value.details == {"url": "http://cdn.test/missing.png"}


def test_connection_failure_is_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    async def scenario() -> None:
        fetcher = _fetcher(handler)
        try:
            await fetcher.get("http://cdn.test/slow.png")
        finally:
            await fetcher.aclose()

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.code == "network_error"
