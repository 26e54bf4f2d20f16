"""Notice state written to local storage by another surface (e.g. the popup)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from startpage.infrastructure.persistence.kv_store import StorageKey

if TYPE_CHECKING:
    from startpage.adapters.remote.session_store import SessionStore
    from startpage.infrastructure.persistence.kv_store import LocalKeyValueStore
    from startpage.services.state_store import LocalStateStore

logger = logging.getLogger(__name__)

_STATE_KEYS = frozenset(
    {
        StorageKey.SHORTCUTS,
        StorageKey.GRID_CONFIG,
        StorageKey.BACKGROUND_CONFIG,
        StorageKey.BACKGROUND_URL,
    }
)
_SESSION_KEYS = frozenset({StorageKey.SYNC_TOKEN, StorageKey.SYNC_EMAIL, StorageKey.LAST_SYNC})


class StorageWatcher:
    def __init__(
        self,
        kv: LocalKeyValueStore,
        store: LocalStateStore,
        sessions: SessionStore | None = None,
    ) -> None:
        self._kv = kv
        self._store = store
        self._sessions = sessions
        self._revision: int | None = None

    @property
    def revision(self) -> int | None:
        return self._revision

    async def start(self) -> None:
        """Skip everything already in storage; only later writes are adopted."""
        self._revision = await self._kv.latest_revision()

    async def poll(self) -> int:
        """Adopt entries other writers changed since the last poll.

        Returns the number of state fields adopted. Only the newest value per
        key is applied.
        """
        if self._revision is None:
            await self.start()
            return 0

        changes = await self._kv.changes_since(self._revision)
        if not changes:
            return 0
        self._revision = max(change.revision for change in changes)

        latest = {change.key: change for change in changes}
        adopted = 0
        for key, change in latest.items():
            if change.value is None or key not in _STATE_KEYS:
                continue
            if await self._store.adopt_external(key, change.value):
                adopted += 1
        if self._sessions is not None and _SESSION_KEYS & latest.keys():
            await self._sessions.load()

        logger.info(
            "external_storage_changes",
            extra={
                "keys": sorted(latest),
                "adopted": adopted,
                "writers": sorted({change.writer for change in changes}),
                "revision": self._revision,
            },
        )
        return adopted
