"""Tests for adopting writes made by another local surface."""

from __future__ import annotations

import pytest

from startpage.adapters.remote.session_store import SessionStore
from startpage.core.time_utils import utc_now
from startpage.domain.events.state_events import MutationOrigin, StateMutated
from startpage.infrastructure.persistence.kv_store import LocalKeyValueStore, StorageKey
from startpage.services.state_store import LocalStateStore
from startpage.services.storage_watcher import StorageWatcher

POPUP_SHORTCUTS = [
    {"id": 1, "title": "Google", "url": "https://google.com"},
    {"id": 99, "title": "Saved from popup", "url": "https://popup.test"},
]


@pytest.fixture
def popup(db):
    return LocalKeyValueStore(db, writer_id="popup")


@pytest.fixture
def store(kv, event_bus):
    return LocalStateStore(kv, event_bus)


@pytest.fixture
def watcher(kv, store, sessions):
    return StorageWatcher(kv, store, sessions)


class TestStorageWatcher:
    @pytest.mark.asyncio
    async def test_existing_entries_are_not_replayed(self, store, watcher, popup):
        await popup.set(StorageKey.SHORTCUTS, POPUP_SHORTCUTS)
        await store.load()
        await watcher.start()

        assert await watcher.poll() == 0
        assert store.last_local_update_at is None

    @pytest.mark.asyncio
    async def test_popup_write_is_adopted(self, store, watcher, popup, event_bus):
        origins: list[MutationOrigin] = []

        async def record(event: StateMutated) -> None:
            origins.append(event.origin)

        event_bus.subscribe(StateMutated, record)
        await store.load()
        await watcher.start()

        await popup.set(StorageKey.SHORTCUTS, POPUP_SHORTCUTS)
        assert await watcher.poll() == 1

        assert [item.id for item in store.state.shortcuts] == [1, 99]
        assert store.last_local_update_at is not None
        assert origins == [MutationOrigin.EXTERNAL]
        assert await watcher.poll() == 0

    @pytest.mark.asyncio
    async def test_own_writes_are_ignored(self, store, watcher):
        await store.load()
        await watcher.start()

        await store.update_grid_config(cols=4)

        assert await watcher.poll() == 0

    @pytest.mark.asyncio
    async def test_only_latest_value_per_key_is_applied(self, store, watcher, popup):
        await store.load()
        await watcher.start()

        await popup.set(StorageKey.BACKGROUND_URL, "https://images.test/one.jpg")
        await popup.set(StorageKey.BACKGROUND_URL, "https://images.test/two.jpg")

        assert await watcher.poll() == 1
        assert store.state.background_url == "https://images.test/two.jpg"

    @pytest.mark.asyncio
    async def test_invalid_external_value_is_skipped(self, store, watcher, popup):
        await store.load()
        await watcher.start()

        await popup.set(StorageKey.GRID_CONFIG, {"cols": 42})

        assert await watcher.poll() == 0
        assert store.state.grid_config.cols == 5

    @pytest.mark.asyncio
    async def test_session_written_elsewhere_is_reloaded(self, store, watcher, popup, sessions):
        await store.load()
        await watcher.start()

        await popup.set_many({StorageKey.SYNC_TOKEN: "tok", StorageKey.SYNC_EMAIL: "ann@example.com"})
        await watcher.poll()

        assert sessions.session.is_authenticated

    @pytest.mark.asyncio
    async def test_poll_before_start_only_initialises(self, store, watcher, popup):
        await store.load()
        await popup.set(StorageKey.SHORTCUTS, POPUP_SHORTCUTS)

        assert await watcher.poll() == 0
        assert watcher.revision is not None

    @pytest.mark.asyncio
    async def test_popup_write_after_logout_is_adopted(self, store, watcher, popup, sessions):
        await store.load()
        await sessions.save("tok", "ann@example.com")
        await sessions.record_sync(utc_now())
        await watcher.start()
        seen = watcher.revision

        await sessions.clear()
        await popup.set(StorageKey.SHORTCUTS, POPUP_SHORTCUTS)

        assert await watcher.poll() == 1
        assert [item.id for item in store.state.shortcuts] == [1, 99]
        assert watcher.revision > seen

    @pytest.mark.asyncio
    async def test_popup_logout_is_seen(self, store, watcher, popup, sessions):
        popup_sessions = SessionStore(popup)
        await store.load()
        await popup_sessions.save("tok", "ann@example.com")
        await sessions.load()
        generation = sessions.generation
        await watcher.start()

        await popup_sessions.clear()

        assert await watcher.poll() == 0
        assert not sessions.session.is_authenticated
        assert sessions.generation > generation
        assert store.last_local_update_at is None
