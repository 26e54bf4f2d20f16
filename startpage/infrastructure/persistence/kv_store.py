"""Durable key-value namespace shared by every local surface.

Each write stamps the entry with a database-wide monotonic revision and the id
of the writer. A surface can then ask for entries that *other* writers changed
after a revision it has already seen, which is how the main view notices a
companion popup saving shortcuts. Deleted keys are kept as ``None`` tombstones
so removals show up in that feed too.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import peewee

from startpage.core.time_utils import utc_now
from startpage.db.models import LocalEntry

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from startpage.db.session import DatabaseSessionManager

logger = logging.getLogger(__name__)


class StorageKey(StrEnum):
    SHORTCUTS = "shortcuts"
    GRID_CONFIG = "grid_config"
    BACKGROUND_CONFIG = "bg_config"
    BACKGROUND_URL = "bg_url"
    LAST_LOCAL_UPDATE = "last_local_update"
    LAST_SYNC = "last_sync"
    SYNC_TOKEN = "sync_token"
    SYNC_EMAIL = "sync_email"


@dataclass(frozen=True)
class EntryChange:
    key: str
    value: Any
    revision: int
    writer: str


class LocalKeyValueStore:
    def __init__(self, db: DatabaseSessionManager, writer_id: str | None = None) -> None:
        self._db = db
        self.writer_id = writer_id or f"view-{uuid.uuid4().hex[:8]}"

    async def get(self, key: str, default: Any = None) -> Any:
        def _get() -> Any:
            entry = LocalEntry.get_or_none(LocalEntry.key == str(key))
            return default if entry is None or entry.value is None else entry.value

        return await self._db.run(_get, read_only=True, operation_name="kv_get")

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        wanted = [str(key) for key in keys]

        def _get_many() -> dict[str, Any]:
            query = LocalEntry.select().where(LocalEntry.key.in_(wanted))
            return {entry.key: entry.value for entry in query if entry.value is not None}

        return await self._db.run(_get_many, read_only=True, operation_name="kv_get_many")

    async def set(self, key: str, value: Any) -> int:
        return await self.set_many({key: value})

    async def set_many(self, values: Mapping[str, Any]) -> int:
        """Write several keys atomically; returns the revision of the last one."""
        items = [(str(key), value) for key, value in values.items()]
        if not items:
            return await self.latest_revision()

        def _set_many() -> int:
            revision = _max_revision()
            now = utc_now()
            for key, value in items:
                revision += 1
                (
                    LocalEntry.insert(
                        key=key, value=value, revision=revision, writer=self.writer_id, updated_at=now
                    )
                    .on_conflict(
                        conflict_target=[LocalEntry.key],
                        update={
                            LocalEntry.value: value,
                            LocalEntry.revision: revision,
                            LocalEntry.writer: self.writer_id,
                            LocalEntry.updated_at: now,
                        },
                    )
                    .execute()
                )
            return revision

        revision = await self._db.run(_set_many, atomic=True, operation_name="kv_set_many")
        logger.debug(
            "kv_written",
            extra={"keys": [key for key, _ in items], "revision": revision, "writer": self.writer_id},
        )
        return revision

    async def delete(self, *keys: str) -> int:
        """Tombstone ``keys`` so other surfaces see the removal in ``changes_since``.

        Rows stay with a ``None`` value and a fresh revision, so the latest
        revision never goes backwards. Returns how many live keys were removed.
        """
        wanted = [str(key) for key in keys]

        def _delete() -> int:
            live = [
                entry.key
                for entry in LocalEntry.select(LocalEntry.key).where(
                    LocalEntry.key.in_(wanted) & LocalEntry.value.is_null(False)
                )
            ]
            revision = _max_revision()
            now = utc_now()
            for key in live:
                revision += 1
                LocalEntry.update(
                    value=None, revision=revision, writer=self.writer_id, updated_at=now
                ).where(LocalEntry.key == key).execute()
            return len(live)

        removed = await self._db.run(_delete, atomic=True, operation_name="kv_delete")
        logger.debug("kv_deleted", extra={"keys": wanted, "removed": removed, "writer": self.writer_id})
        return removed

    async def latest_revision(self) -> int:
        return await self._db.run(_max_revision, read_only=True, operation_name="kv_revision")

    async def changes_since(self, revision: int) -> list[EntryChange]:
        """Entries written by other writers after ``revision``, oldest first."""

        def _changes() -> list[EntryChange]:
            query = (
                LocalEntry.select()
                .where((LocalEntry.revision > revision) & (LocalEntry.writer != self.writer_id))
                .order_by(LocalEntry.revision)
            )
            return [
                EntryChange(key=e.key, value=e.value, revision=e.revision, writer=e.writer)
                for e in query
            ]

        return await self._db.run(_changes, read_only=True, operation_name="kv_changes_since")


def _max_revision() -> int:
    value = LocalEntry.select(peewee.fn.MAX(LocalEntry.revision)).scalar()
    return int(value or 0)
