"""Dependency injection container for wiring components.

This container is the one place that knows how the database, stores, remote
client, caches and services fit together.

Example:
    ```python
    container = Container(load_config())
    await container.start()
    await container.store.add_shortcut("Docs", "https://docs.python.org")
    await container.aclose()
    ```
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from startpage.adapters.remote.client import RemoteSyncClient
from startpage.adapters.remote.session_store import SessionStore
from startpage.db.session import DatabaseSessionManager
from startpage.infrastructure.cache.asset_cache import AssetCache, CacheNamespace
from startpage.infrastructure.messaging.event_bus import EventBus
from startpage.infrastructure.persistence.kv_store import LocalKeyValueStore
from startpage.services.background_swapper import BackgroundSwapper
from startpage.services.reconciliation import ReconciliationEngine
from startpage.services.scheduler import SchedulerService
from startpage.services.state_store import LocalStateStore
from startpage.services.storage_watcher import StorageWatcher

if TYPE_CHECKING:
    from startpage.config import AppConfig

logger = logging.getLogger(__name__)


class Container:
    """Builds and owns every long-lived component of one view."""

    def __init__(
        self,
        cfg: AppConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        writer_id: str | None = None,
    ) -> None:
        """Initialize the container.

        Args:
            cfg: Application configuration.
            http_client: Optional shared client; one is created (and closed in
                ``aclose``) when omitted.
            writer_id: Identity recorded on local storage writes; distinct
                surfaces sharing one database must use distinct ids.
        """
        self.cfg = cfg
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=cfg.cache.fetch_timeout_sec, follow_redirects=True
        )

        self.db = DatabaseSessionManager(cfg.runtime.db_path)
        self.event_bus = EventBus()
        self.kv = LocalKeyValueStore(self.db, writer_id=writer_id)
        self.sessions = SessionStore(self.kv)
        self.remote = RemoteSyncClient(
            cfg.sync.base_url,
            self.sessions,
            timeout=cfg.sync.request_timeout_sec,
            http_client=self.http_client,
        )
        self.icon_cache = AssetCache(self.db, CacheNamespace.ICON, cfg.cache, self.http_client)
        self.background_cache = AssetCache(
            self.db, CacheNamespace.BACKGROUND, cfg.cache, self.http_client
        )
        self.store = LocalStateStore(self.kv, self.event_bus)
        self.swapper = BackgroundSwapper(self.background_cache, http_client=self.http_client)
        self.engine = ReconciliationEngine(self.store, self.remote, self.event_bus, cfg.sync)
        self.watcher = StorageWatcher(self.kv, self.store, self.sessions)
        self.scheduler = SchedulerService(cfg.sync, self.engine, self.watcher)
        self._started = False

    async def start(self, *, background: bool = True) -> None:
        """Load persisted state and bring the services up.

        With ``background=False`` the scheduler and the background swapper are
        left off, which suits one-shot command-line use.
        """
        if self._started:
            return
        self.db.migrate()
        await self.sessions.load()
        await self.store.load()
        await self.watcher.start()

        if background:
            self.swapper.attach(self.event_bus, lambda: self.store.state.background_url)
            await self.swapper.mount(self.store.state.background_url)

        if self.cfg.sync.enabled:
            outcome = await self.engine.start()
            logger.info("startup_pull_finished", extra={"outcome": outcome.value})

        if background:
            await self.scheduler.start()
        self._started = True

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.engine.stop()
        await self.swapper.aclose()
        await self.icon_cache.aclose()
        await self.background_cache.aclose()
        if self._owns_http_client:
            await self.http_client.aclose()
        self.db.close()
        self._started = False
        logger.info("container_closed")
