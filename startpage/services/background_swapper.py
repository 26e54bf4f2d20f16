"""Double-buffered background image slot.

The active frame stays visible until its replacement has been fetched and
decoded off-screen; only then is it swapped in. A failed fetch or decode still
swaps (with ``decoded=False``) so the slot can never be stuck loading.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import httpx
from PIL import Image, UnidentifiedImageError

from startpage.core.async_utils import BackgroundTasks
from startpage.core.time_utils import utc_now
from startpage.core.url_utils import decode_data_uri, is_data_uri, is_fetchable_url
from startpage.domain.events.state_events import BackgroundSwapped, StateField, StateMutated

if TYPE_CHECKING:
    from collections.abc import Callable

    from startpage.infrastructure.cache.asset_cache import AssetCache
    from startpage.infrastructure.messaging.event_bus import EventBus

logger = logging.getLogger(__name__)


class SwapState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"


@dataclass(frozen=True)
class BackgroundFrame:
    url: str
    data: bytes | None
    size: tuple[int, int] | None
    decoded: bool
    from_cache: bool


class ImageDecodeError(Exception):
    """Raised when image bytes cannot be fully decoded."""


def decode_image(data: bytes) -> tuple[int, int]:
    """Fully decode ``data`` with Pillow and return its pixel size."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return img.size
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(str(exc)) from exc


class BackgroundSwapper:
    def __init__(
        self,
        cache: AssetCache,
        *,
        http_client: httpx.AsyncClient | None = None,
        event_bus: EventBus | None = None,
        decoder: Callable[[bytes], tuple[int, int]] = decode_image,
    ) -> None:
        self._cache = cache
        self._client = http_client
        self._bus = event_bus
        self._decoder = decoder
        self._state = SwapState.IDLE
        self._active: BackgroundFrame | None = None
        self._candidate_url: str | None = None
        self._generation = 0
        self._load_task: asyncio.Task[None] | None = None
        self._cache_warming = BackgroundTasks("background_cache")

    @property
    def state(self) -> SwapState:
        return self._state

    @property
    def active(self) -> BackgroundFrame | None:
        return self._active

    @property
    def candidate_url(self) -> str | None:
        return self._candidate_url

    def attach(self, event_bus: EventBus, current_url: Callable[[], str]) -> None:
        """Follow background URL changes announced on ``event_bus``."""
        self._bus = event_bus

        async def _on_state_mutated(event: StateMutated) -> None:
            if event.field is StateField.BACKGROUND_URL:
                self.change(current_url())

        event_bus.subscribe(StateMutated, _on_state_mutated)

    async def mount(self, url: str) -> BackgroundFrame | None:
        """Initial display: use cached bytes directly, otherwise start a preload."""
        cached = await self._cache.get(url)
        if cached is not None and self._active is None:
            self._active = BackgroundFrame(
                url=url, data=cached.data, size=None, decoded=True, from_cache=True
            )
            logger.info("background_mounted_from_cache", extra={"url": url})
            await self._announce(self._active)
            return self._active
        self.change(url)
        return self._active

    def change(self, url: str) -> None:
        """Start preloading ``url``; the newest request supersedes older ones."""
        if not url:
            return
        if self._state is SwapState.IDLE and self._active is not None and self._active.url == url:
            return
        if self._state is SwapState.LOADING and self._candidate_url == url:
            return

        self._generation += 1
        self._candidate_url = url
        self._state = SwapState.LOADING
        self._load_task = asyncio.create_task(
            self._preload_and_commit(url, self._generation), name=f"background_preload:{url}"
        )

    async def wait_idle(self) -> None:
        while self._load_task is not None and not self._load_task.done():
            await asyncio.shield(self._load_task)

    async def wait_cached(self) -> None:
        await self._cache_warming.drain()

    async def aclose(self) -> None:
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
            await asyncio.gather(self._load_task, return_exceptions=True)
        await self._cache_warming.cancel_all()

    async def _preload_and_commit(self, url: str, generation: int) -> None:
        data, from_cache = await self._load_bytes(url)
        size: tuple[int, int] | None = None
        decoded = False
        if data is not None:
            try:
                size = await asyncio.to_thread(self._decoder, data)
                decoded = True
            except ImageDecodeError as exc:
                logger.warning("background_decode_failed", extra={"url": url, "error": str(exc)})

        if generation != self._generation:
            logger.debug("background_preload_superseded", extra={"url": url})
            return

        self._active = BackgroundFrame(
            url=url, data=data, size=size, decoded=decoded, from_cache=from_cache
        )
        self._candidate_url = None
        self._state = SwapState.IDLE
        logger.info(
            "background_swapped",
            extra={"url": url, "decoded": decoded, "from_cache": from_cache, "size": size},
        )

        if is_fetchable_url(url):
            self._cache_warming.spawn(self._cache.ensure(url), label=url)
        await self._announce(self._active)

    async def _load_bytes(self, url: str) -> tuple[bytes | None, bool]:
        if is_data_uri(url):
            try:
                return decode_data_uri(url).payload, False
            except ValueError as exc:
                logger.warning("background_data_uri_invalid", extra={"error": str(exc)})
                return None, False

        cached = await self._cache.get(url)
        if cached is not None:
            return cached.data, True

        if not is_fetchable_url(url):
            return None, False

        client = self._client or self._cache.client
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("background_fetch_failed", extra={"url": url, "error": str(exc)})
            return None, False
        return response.content, False

    async def _announce(self, frame: BackgroundFrame) -> None:
        if self._bus is None:
            return
        await self._bus.publish(
            BackgroundSwapped(
                occurred_at=utc_now(),
                url=frame.url,
                decoded=frame.decoded,
                from_cache=frame.from_cache,
            )
        )
