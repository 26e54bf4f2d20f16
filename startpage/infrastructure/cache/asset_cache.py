"""Durable cache of fetched image assets (site icons, background photos).

Entries live in the ``asset_blobs`` table, keyed by ``(namespace, url)``. An
entry is written once and never replaced; eviction is left to whoever manages
the database file. Every failure mode degrades to "not cached" so the caller
can fall back to loading the URL directly.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import httpx
import peewee

from startpage.core.async_utils import BackgroundTasks
from startpage.core.http_utils import ResponseSizeError, validate_response_size
from startpage.core.url_utils import is_fetchable_url
from startpage.db.models import AssetBlob

if TYPE_CHECKING:
    from startpage.config import AssetCacheConfig
    from startpage.db.session import DatabaseSessionManager

logger = logging.getLogger(__name__)


class CacheNamespace(StrEnum):
    ICON = "icon"
    BACKGROUND = "background"


@dataclass(frozen=True)
class CachedAsset:
    url: str
    data: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class ResolvedAsset:
    """What a renderer should display: cached bytes, or the URL to load directly."""

    url: str
    asset: CachedAsset | None

    @property
    def from_cache(self) -> bool:
        return self.asset is not None


class AssetCache:
    """Cache-first blob store for one namespace."""

    def __init__(
        self,
        db: DatabaseSessionManager,
        namespace: CacheNamespace,
        cfg: AssetCacheConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._db = db
        self.namespace = CacheNamespace(namespace)
        self._cfg = cfg
        self._client = http_client
        self._owns_client = http_client is None
        self._inflight: dict[str, asyncio.Task[bool]] = {}
        self._warming = BackgroundTasks(f"asset_cache_{self.namespace}")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._cfg.fetch_timeout_sec, follow_redirects=True
            )
        return self._client

    async def get(self, url: str) -> CachedAsset | None:
        """Return the cached bytes for ``url``; never touches the network."""
        if not is_fetchable_url(url):
            return None

        def _lookup() -> CachedAsset | None:
            row = AssetBlob.get_or_none(
                (AssetBlob.namespace == self.namespace.value) & (AssetBlob.url == url)
            )
            if row is None:
                return None
            return CachedAsset(url=row.url, data=bytes(row.blob), content_type=row.content_type)

        try:
            return await self._db.run(_lookup, read_only=True, operation_name="asset_cache_get")
        except (peewee.PeeweeException, TimeoutError) as exc:
            logger.warning(
                "asset_cache_get_failed",
                extra={"namespace": self.namespace.value, "url": url, "error": str(exc)},
            )
            return None

    async def ensure(self, url: str) -> bool:
        """Make sure ``url`` is cached, fetching it on a miss.

        Concurrent calls for the same URL share one fetch. Returns ``False`` for
        non-fetchable URLs and for any fetch or store failure.
        """
        if not is_fetchable_url(url):
            return False

        task = self._inflight.get(url)
        if task is None:
            task = asyncio.create_task(
                self._fetch_and_store(url), name=f"asset_cache_{self.namespace}:{url}"
            )
            self._inflight[url] = task
            task.add_done_callback(lambda done, key=url: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, url: str, task: asyncio.Task[bool]) -> None:
        if self._inflight.get(url) is task:
            del self._inflight[url]

    async def resolve(self, url: str) -> ResolvedAsset:
        """Cache-first read that warms the cache in the background on a miss."""
        cached = await self.get(url)
        if cached is not None:
            return ResolvedAsset(url=url, asset=cached)
        if is_fetchable_url(url):
            self._warming.spawn(self.ensure(url), label=url)
        return ResolvedAsset(url=url, asset=None)

    async def count(self) -> int:
        def _count() -> int:
            return AssetBlob.select().where(AssetBlob.namespace == self.namespace.value).count()

        return await self._db.run(_count, read_only=True, operation_name="asset_cache_count")

    async def wait_idle(self) -> None:
        """Wait for background warming started by ``resolve``."""
        await self._warming.drain()

    async def aclose(self) -> None:
        await self._warming.cancel_all()
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _fetch_and_store(self, url: str) -> bool:
        if await self.get(url) is not None:
            return True

        headers = {"Sec-Fetch-Mode": "cors"}
        if self._cfg.request_origin:
            headers["Origin"] = self._cfg.request_origin

        try:
            response = await self.client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(
                "asset_fetch_failed",
                extra={"namespace": self.namespace.value, "url": url, "error": str(exc)},
            )
            return False

        if not response.is_success:
            logger.warning(
                "asset_fetch_bad_status",
                extra={
                    "namespace": self.namespace.value,
                    "url": url,
                    "status_code": response.status_code,
                },
            )
            return False

        try:
            validate_response_size(response, self._cfg.max_bytes, f"asset_{self.namespace}")
        except ResponseSizeError:
            return False

        body = response.content
        content_type = response.headers.get("content-type")

        def _store() -> None:
            AssetBlob.insert(
                namespace=self.namespace.value,
                url=url,
                blob=body,
                content_type=content_type,
                size=len(body),
            ).on_conflict_ignore().execute()

        try:
            await self._db.run(_store, operation_name="asset_cache_put")
        except (peewee.PeeweeException, TimeoutError) as exc:
            logger.warning(
                "asset_cache_put_failed",
                extra={"namespace": self.namespace.value, "url": url, "error": str(exc)},
            )
            return False

        logger.debug(
            "asset_cached",
            extra={"namespace": self.namespace.value, "url": url, "size": len(body)},
        )
        return True
