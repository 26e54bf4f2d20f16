"""Tests for the durable key-value store and its change feed."""

from __future__ import annotations

import pytest

from startpage.infrastructure.persistence.kv_store import LocalKeyValueStore, StorageKey


class TestLocalKeyValueStore:
    @pytest.mark.asyncio
    async def test_round_trip_json_values(self, kv):
        await kv.set(StorageKey.GRID_CONFIG, {"cols": 4, "showSearchBar": False})

        assert await kv.get(StorageKey.GRID_CONFIG) == {"cols": 4, "showSearchBar": False}
        assert await kv.get("missing", "fallback") == "fallback"

    @pytest.mark.asyncio
    async def test_get_many_skips_missing_keys(self, kv):
        await kv.set_many({"a": 1, "b": [1, 2]})

        assert await kv.get_many(["a", "b", "c"]) == {"a": 1, "b": [1, 2]}

    @pytest.mark.asyncio
    async def test_revisions_increase_across_writes(self, kv):
        first = await kv.set("a", 1)
        second = await kv.set_many({"b": 2, "c": 3})
        third = await kv.set("a", 4)

        assert first < second < third
        assert await kv.latest_revision() == third

    @pytest.mark.asyncio
    async def test_delete(self, kv):
        await kv.set_many({"a": 1, "b": 2})

        assert await kv.delete("a", "missing") == 1
        assert await kv.get("a") is None
        assert await kv.get("b") == 2

    @pytest.mark.asyncio
    async def test_changes_since_reports_other_writers_only(self, kv, db):
        popup = LocalKeyValueStore(db, writer_id="popup")
        start = await kv.latest_revision()

        await kv.set(StorageKey.BACKGROUND_URL, "https://mine.test/bg.jpg")
        await popup.set(StorageKey.SHORTCUTS, [{"id": 1, "title": "A", "url": "https://a.test"}])

        changes = await kv.changes_since(start)

        assert [(change.key, change.writer) for change in changes] == [("shortcuts", "popup")]
        assert await kv.changes_since(changes[-1].revision) == []

    @pytest.mark.asyncio
    async def test_overwrite_takes_new_writer(self, kv, db):
        popup = LocalKeyValueStore(db, writer_id="popup")
        await popup.set("shared", 1)
        await kv.set("shared", 2)

        assert await kv.changes_since(0) == []
        changes = await popup.changes_since(0)
        assert [(change.key, change.value) for change in changes] == [("shared", 2)]

    @pytest.mark.asyncio
    async def test_delete_leaves_tombstone_with_new_revision(self, kv, db):
        popup = LocalKeyValueStore(db, writer_id="popup")
        await kv.set_many({StorageKey.SYNC_TOKEN: "tok", StorageKey.SYNC_EMAIL: "a@b.test"})
        before = await kv.latest_revision()

        assert await kv.delete(StorageKey.SYNC_TOKEN, StorageKey.SYNC_EMAIL) == 2
        assert await kv.latest_revision() == before + 2
        assert await kv.get_many([StorageKey.SYNC_TOKEN, StorageKey.SYNC_EMAIL]) == {}

        changes = await popup.changes_since(before)
        assert sorted((change.key, change.value) for change in changes) == [
            ("sync_email", None),
            ("sync_token", None),
        ]
        assert await kv.delete(StorageKey.SYNC_TOKEN) == 0
        assert await kv.latest_revision() == before + 2

    @pytest.mark.asyncio
    async def test_write_after_delete_gets_higher_revision(self, kv):
        await kv.set("a", 1)
        high = await kv.set("b", 2)

        await kv.delete("b")

        assert await kv.set("c", 3) > high
