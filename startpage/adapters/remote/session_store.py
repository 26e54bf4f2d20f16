"""Persisted sync session (token, email) and last-sync timestamp."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from startpage.core.time_utils import parse_iso, to_iso
from startpage.domain.models.state import SyncSession
from startpage.infrastructure.persistence.kv_store import StorageKey

if TYPE_CHECKING:
    from datetime import datetime

    from startpage.infrastructure.persistence.kv_store import LocalKeyValueStore

logger = logging.getLogger(__name__)


class SessionStore:
    """In-memory view of the session, written through to the local store.

    ``generation`` increases whenever the session is replaced or cleared, so a
    caller holding the value from before an await can tell the account changed.
    """

    def __init__(self, kv: LocalKeyValueStore) -> None:
        self._kv = kv
        self._session = SyncSession()
        self._last_sync_at: datetime | None = None
        self.generation = 0

    @property
    def session(self) -> SyncSession:
        return self._session

    @property
    def last_sync_at(self) -> datetime | None:
        return self._last_sync_at

    async def load(self) -> SyncSession:
        values = await self._kv.get_many(
            (StorageKey.SYNC_TOKEN, StorageKey.SYNC_EMAIL, StorageKey.LAST_SYNC)
        )
        session = SyncSession(
            token=values.get(StorageKey.SYNC_TOKEN), email=values.get(StorageKey.SYNC_EMAIL)
        )
        if session != self._session:
            self._session = session
            self.generation += 1
        self._last_sync_at = parse_iso(values.get(StorageKey.LAST_SYNC))
        return self._session

    async def save(self, token: str, email: str) -> SyncSession:
        self._session = SyncSession(token=token, email=email)
        self.generation += 1
        await self._kv.set_many({StorageKey.SYNC_TOKEN: token, StorageKey.SYNC_EMAIL: email})
        return self._session

    async def clear(self) -> None:
        self._session = SyncSession()
        self._last_sync_at = None
        self.generation += 1
        await self._kv.delete(StorageKey.SYNC_TOKEN, StorageKey.SYNC_EMAIL, StorageKey.LAST_SYNC)

    async def record_sync(self, at: datetime) -> None:
        self._last_sync_at = at
        await self._kv.set(StorageKey.LAST_SYNC, to_iso(at))
