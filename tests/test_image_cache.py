from __future__ import annotations

import asyncio
import hashlib
import io

from PIL import Image

from messenger_cli.core.errors import TransportError
from messenger_cli.services.image_cache import ImageCache, cache_key
from messenger_cli.transport.media import MediaResponse


def _image_bytes(image_format: str, *, size: tuple[int, int] = (40, 20), color: str = "white") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=image_format)
    return buffer.getvalue()


class _FakeFetcher:
    def __init__(self, responses: dict[str, bytes] | None = None, *, failure: Exception | None = None) -> None:
        self._responses = responses or {}
        self._failure = failure
        self.requested: list[str] = []

    async def get(self, url: str) -> MediaResponse:
        self.requested.append(url)
        await asyncio.sleep(0)
        if self._failure is not None:
            raise self._failure
        return MediaResponse(content=self._responses[url], content_type="image/jpeg")


def test_cache_miss_then_hit_fetches_once(tmp_path, terminal_size):
    url = "http://x/img.jpg"
    fetcher = _FakeFetcher({url: _image_bytes("JPEG")})
    cache = ImageCache(tmp_path, fetcher, terminal_size=terminal_size)

    first = asyncio.run(cache.resolve(url))
    second = asyncio.run(cache.resolve(url))

    assert fetcher.requested == [url]
    assert first == second
    assert first.startswith("http://x/img.jpg\n\n")
    assert len(first) > len("http://x/img.jpg\n\n")

    expected_name = hashlib.sha256(url.encode("utf-8")).hexdigest() + ".png"
    assert [path.name for path in tmp_path.iterdir()] == [expected_name]
    assert cache.artifact_path(url).name == expected_name
    with Image.open(tmp_path / expected_name) as stored:
        assert stored.format == "PNG"


def test_png_source_is_stored_without_conversion(tmp_path, terminal_size):
    url = "http://x/pic.png"
    content = _image_bytes("PNG", color="black")
    cache = ImageCache(tmp_path, _FakeFetcher({url: content}), terminal_size=terminal_size)

    result = asyncio.run(cache.resolve(url))

    assert result.startswith(f"{url}\n\n")
    assert (tmp_path / f"{cache_key(url)}.png").read_bytes() == content


def test_concurrent_resolves_share_one_download(tmp_path, terminal_size):
    url = "http://x/shared.gif"
    fetcher = _FakeFetcher({url: _image_bytes("GIF")})
    cache = ImageCache(tmp_path, fetcher, terminal_size=terminal_size)

    async def resolve_many():
        return await asyncio.gather(*(cache.resolve(url) for _ in range(5)))

    results = asyncio.run(resolve_many())

    assert fetcher.requested == [url]
    assert len(set(results)) == 1


def test_download_locks_are_dropped_once_settled(tmp_path, terminal_size):
    urls = ["http://x/a.jpg", "http://x/b.jpg", "http://x/a.jpg", "http://x/garbage"]
    fetcher = _FakeFetcher(
        {"http://x/a.jpg": _image_bytes("JPEG"), "http://x/b.jpg": _image_bytes("PNG"), "http://x/garbage": b"nope"}
    )
    cache = ImageCache(tmp_path, fetcher, terminal_size=terminal_size)

    async def resolve_all():
        return await asyncio.gather(*(cache.resolve(url) for url in urls))

    results = asyncio.run(resolve_all())

    assert results[3] == ""
    assert sorted(fetcher.requested) == ["http://x/a.jpg", "http://x/b.jpg", "http://x/garbage"]
    assert cache._key_locks == {}
    assert cache._key_users == {}


def test_fetch_failure_resolves_to_empty_string(tmp_path, terminal_size):
    fetcher = _FakeFetcher(failure=TransportError(code="network_error", message="connection refused"))
    cache = ImageCache(tmp_path, fetcher, terminal_size=terminal_size)

    assert asyncio.run(cache.resolve("http://x/broken.jpg")) == ""
    assert list(tmp_path.iterdir()) == []


def test_undecodable_content_resolves_to_empty_string_and_cleans_up(tmp_path, terminal_size):
    url = "http://x/not-an-image"
    cache = ImageCache(tmp_path, _FakeFetcher({url: b"<html>nope</html>"}), terminal_size=terminal_size)

    assert asyncio.run(cache.resolve(url)) == ""
    assert list(tmp_path.iterdir()) == []


def test_empty_url_skips_cache(tmp_path, terminal_size):
    fetcher = _FakeFetcher()
    cache = ImageCache(tmp_path / "never-created", fetcher, terminal_size=terminal_size)

    assert asyncio.run(cache.resolve("")) == ""
    assert asyncio.run(cache.resolve(None)) == ""
    assert fetcher.requested == []
    assert not (tmp_path / "never-created").exists()


def test_render_fits_viewport(tmp_path, terminal_size):
    url = "http://x/wide.jpg"
    cache = ImageCache(tmp_path, _FakeFetcher({url: _image_bytes("JPEG", size=(400, 100))}), terminal_size=terminal_size)
    columns, rows = cache.viewport()

    art = asyncio.run(cache.resolve(url)).split("\n\n", 1)[1]
    lines = art.split("\n")

    assert (columns, rows) == (80, 24)
    assert 0 < len(lines) <= rows
    assert all(len(line) <= columns for line in lines)
