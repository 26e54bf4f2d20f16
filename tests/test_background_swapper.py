"""Tests for the double-buffered background swapper."""

from __future__ import annotations

import asyncio
import io
from datetime import UTC, datetime

import httpx
import pytest
from PIL import Image

from startpage.core.url_utils import encode_data_uri
from startpage.domain.events.state_events import (
    BackgroundSwapped,
    MutationOrigin,
    StateField,
    StateMutated,
)
from startpage.infrastructure.cache.asset_cache import AssetCache, CacheNamespace
from startpage.services.background_swapper import (
    BackgroundSwapper,
    ImageDecodeError,
    SwapState,
    decode_image,
)

URL_A = "https://images.test/a.png"
URL_B = "https://images.test/b.png"


def png_bytes(size: tuple[int, int] = (4, 3)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(10, 20, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


class ImageServer:
    def __init__(self) -> None:
        self.bodies: dict[str, bytes] = {URL_A: png_bytes(), URL_B: png_bytes((8, 6))}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    async def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        gate = self.gates.get(url)
        if gate is not None:
            await gate.wait()
        body = self.bodies.get(url)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body, headers={"content-type": "image/png"})


@pytest.fixture
def server():
    return ImageServer()


@pytest.fixture
def http_client(server):
    return httpx.AsyncClient(transport=httpx.MockTransport(server.handle))


@pytest.fixture
def cache(db, http_client):
    from startpage.config import AssetCacheConfig

    return AssetCache(db, CacheNamespace.BACKGROUND, AssetCacheConfig(), http_client)


@pytest.fixture
def swapper(cache, http_client, event_bus):
    return BackgroundSwapper(cache, http_client=http_client, event_bus=event_bus)


def test_decode_image_reports_size():
    assert decode_image(png_bytes((5, 7))) == (5, 7)
    with pytest.raises(ImageDecodeError):
        decode_image(b"definitely not an image")


class TestSwap:
    @pytest.mark.asyncio
    async def test_first_load_swaps_after_decode(self, swapper):
        swapper.change(URL_A)
        assert swapper.state is SwapState.LOADING
        assert swapper.active is None

        await swapper.wait_idle()

        assert swapper.state is SwapState.IDLE
        assert swapper.active.url == URL_A
        assert swapper.active.decoded is True
        assert swapper.active.size == (4, 3)

    @pytest.mark.asyncio
    async def test_old_image_stays_until_replacement_is_ready(self, swapper, server):
        swapper.change(URL_A)
        await swapper.wait_idle()

        server.gates[URL_B] = asyncio.Event()
        swapper.change(URL_B)
        await asyncio.sleep(0.01)

        assert swapper.state is SwapState.LOADING
        assert swapper.candidate_url == URL_B
        assert swapper.active.url == URL_A

        server.gates[URL_B].set()
        await swapper.wait_idle()
        assert swapper.active.url == URL_B
        assert swapper.candidate_url is None

    @pytest.mark.asyncio
    async def test_decode_failure_still_swaps(self, swapper, server):
        swapper.change(URL_A)
        await swapper.wait_idle()
        server.bodies[URL_B] = b"<html>not an image</html>"

        swapper.change(URL_B)
        assert swapper.active.url == URL_A
        await swapper.wait_idle()

        assert swapper.state is SwapState.IDLE
        assert swapper.active.url == URL_B
        assert swapper.active.decoded is False

    @pytest.mark.asyncio
    async def test_fetch_failure_still_swaps(self, swapper):
        missing = "https://images.test/missing.png"

        swapper.change(missing)
        await swapper.wait_idle()

        assert swapper.active.url == missing
        assert swapper.active.data is None
        assert swapper.active.decoded is False

    @pytest.mark.asyncio
    async def test_newer_change_supersedes_slow_preload(self, swapper, server):
        server.gates[URL_A] = asyncio.Event()
        swapper.change(URL_A)
        await asyncio.sleep(0.01)

        swapper.change(URL_B)
        await asyncio.sleep(0.01)
        server.gates[URL_A].set()
        await swapper.wait_idle()

        assert swapper.active.url == URL_B

    @pytest.mark.asyncio
    async def test_data_uri_background_is_not_cached(self, swapper, cache, server):
        url = encode_data_uri(png_bytes((2, 2)), "image/png")

        swapper.change(url)
        await swapper.wait_idle()
        await swapper.wait_cached()

        assert swapper.active.size == (2, 2)
        assert server.calls == []
        assert await cache.count() == 0


class TestCaching:
    @pytest.mark.asyncio
    async def test_active_url_is_cached_in_background(self, swapper, cache):
        swapper.change(URL_A)
        await swapper.wait_idle()
        await swapper.wait_cached()

        assert (await cache.get(URL_A)) is not None

    @pytest.mark.asyncio
    async def test_mount_uses_cache_without_network(self, swapper, cache, server):
        await cache.ensure(URL_A)
        server.calls.clear()

        frame = await swapper.mount(URL_A)

        assert frame is not None
        assert frame.from_cache is True
        assert swapper.state is SwapState.IDLE
        assert server.calls == []

    @pytest.mark.asyncio
    async def test_mount_miss_starts_preload(self, swapper):
        assert await swapper.mount(URL_A) is None
        assert swapper.state is SwapState.LOADING

        await swapper.wait_idle()
        assert swapper.active.from_cache is False


class TestEvents:
    @pytest.mark.asyncio
    async def test_follows_background_url_mutations(self, swapper, event_bus):
        current = {"url": URL_A}
        swapped: list[BackgroundSwapped] = []

        async def record(event: BackgroundSwapped) -> None:
            swapped.append(event)

        event_bus.subscribe(BackgroundSwapped, record)
        swapper.attach(event_bus, lambda: current["url"])

        now = datetime.now(UTC)
        await event_bus.publish(
            StateMutated(occurred_at=now, field=StateField.GRID_CONFIG, origin=MutationOrigin.LOCAL)
        )
        assert swapper.state is SwapState.IDLE

        await event_bus.publish(
            StateMutated(occurred_at=now, field=StateField.BACKGROUND_URL, origin=MutationOrigin.REMOTE)
        )
        await swapper.wait_idle()

        assert swapper.active.url == URL_A
        assert [event.url for event in swapped] == [URL_A]
        await swapper.aclose()
