"""Local start-page state: the single owner of shortcuts, layout and background.

Every mutation is serialised, persisted to the local key-value store and then
announced as a ``StateMutated`` event. Mutations made on this device are
time-stamped (``last_local_update``); values applied from a pulled snapshot are
not, which is what lets the reconciliation engine tell the two apart.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from startpage.core.time_utils import epoch_millis, parse_iso, to_iso, utc_now
from startpage.core.url_utils import is_data_uri, is_fetchable_url
from startpage.domain.events.state_events import MutationOrigin, StateField, StateMutated
from startpage.domain.exceptions.domain_exceptions import ResourceNotFoundError, ValidationError
from startpage.domain.models.state import (
    DEFAULT_SHORTCUTS,
    BackgroundConfig,
    GridConfig,
    LocalState,
    ShortcutItem,
    dump_shortcuts,
)
from startpage.infrastructure.persistence.kv_store import StorageKey

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from datetime import datetime

    from startpage.adapters.remote.models import RemoteSnapshot
    from startpage.domain.models.state import IconRef
    from startpage.infrastructure.messaging.event_bus import EventBus
    from startpage.infrastructure.persistence.kv_store import LocalKeyValueStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_FIELD_KEYS: dict[StateField, StorageKey] = {
    StateField.SHORTCUTS: StorageKey.SHORTCUTS,
    StateField.GRID_CONFIG: StorageKey.GRID_CONFIG,
    StateField.BACKGROUND_CONFIG: StorageKey.BACKGROUND_CONFIG,
    StateField.BACKGROUND_URL: StorageKey.BACKGROUND_URL,
}

_STATE_ATTRS: dict[StateField, str] = {
    StateField.SHORTCUTS: "shortcuts",
    StateField.GRID_CONFIG: "grid_config",
    StateField.BACKGROUND_CONFIG: "background_config",
    StateField.BACKGROUND_URL: "background_url",
}


def _build(model: type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}: {exc.errors()[0]['msg']}",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def _parse_shortcuts(value: Any) -> tuple[ShortcutItem, ...]:
    if not isinstance(value, list | tuple):
        raise ValidationError("Shortcuts must be a list")
    items = tuple(_build(ShortcutItem, item) for item in value)
    ids = [item.id for item in items]
    if len(ids) != len(set(ids)):
        raise ValidationError("Shortcut ids must be unique")
    return items


def _parse_background_url(value: Any) -> str:
    url = value.strip() if isinstance(value, str) else ""
    if not (is_fetchable_url(url) or is_data_uri(url)):
        raise ValidationError("Background must be an http(s) URL or an image data URI")
    return url


_PARSERS: dict[StateField, Callable[[Any], Any]] = {
    StateField.SHORTCUTS: _parse_shortcuts,
    StateField.GRID_CONFIG: lambda value: _build(GridConfig, value),
    StateField.BACKGROUND_CONFIG: lambda value: _build(BackgroundConfig, value),
    StateField.BACKGROUND_URL: _parse_background_url,
}


def _serialize(field: StateField, value: Any) -> Any:
    if field is StateField.SHORTCUTS:
        return dump_shortcuts(value)
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json")
    return value


class LocalStateStore:
    def __init__(
        self,
        kv: LocalKeyValueStore,
        event_bus: EventBus,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._kv = kv
        self._bus = event_bus
        self._clock = clock
        self._state = LocalState()
        self._last_local_update_at: datetime | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> LocalState:
        return self._state

    @property
    def last_local_update_at(self) -> datetime | None:
        return self._last_local_update_at

    async def load(self) -> LocalState:
        """Read persisted state, falling back to defaults for missing or corrupt keys.

        A fresh install gets the default shortcuts persisted immediately. That
        seeding is not a user edit, so it does not stamp a local update.
        """
        keys = [*_FIELD_KEYS.values(), StorageKey.LAST_LOCAL_UPDATE]
        async with self._lock:
            stored = await self._kv.get_many(keys)
            values: dict[str, Any] = {}
            for field, key in _FIELD_KEYS.items():
                if key not in stored:
                    continue
                try:
                    values[_STATE_ATTRS[field]] = _PARSERS[field](stored[key])
                except ValidationError as exc:
                    logger.warning(
                        "local_state_corrupt_field",
                        extra={"field": field.value, "error": exc.message},
                    )

            self._state = LocalState(**values)
            self._last_local_update_at = parse_iso(stored.get(StorageKey.LAST_LOCAL_UPDATE))

            if StorageKey.SHORTCUTS not in stored:
                await self._kv.set(StorageKey.SHORTCUTS, dump_shortcuts(DEFAULT_SHORTCUTS))
                logger.info("local_state_seeded_defaults", extra={"shortcuts": len(DEFAULT_SHORTCUTS)})

        logger.info(
            "local_state_loaded",
            extra={
                "shortcuts": len(self._state.shortcuts),
                "last_local_update": to_iso(self._last_local_update_at),
            },
        )
        return self._state

    # ------------------------------------------------------------------
    # Local mutations
    # ------------------------------------------------------------------

    async def add_shortcut(
        self,
        title: str,
        url: str,
        *,
        icon: IconRef | None = None,
        icon_padding: bool = False,
    ) -> ShortcutItem:
        async with self._lock:
            existing = {item.id for item in self._state.shortcuts}
            new_id = epoch_millis(self._clock())
            if new_id in existing or (existing and new_id <= max(existing)):
                new_id = max(max(existing) + 1, new_id)
            item = _build(
                ShortcutItem,
                {"id": new_id, "title": title, "url": url, "icon": icon, "icon_padding": icon_padding},
            )
            await self._commit(
                {StateField.SHORTCUTS: (*self._state.shortcuts, item)}, MutationOrigin.LOCAL
            )
        return item

    async def edit_shortcut(self, item: ShortcutItem) -> ShortcutItem:
        """Replace the shortcut with ``item.id`` wholesale."""
        async with self._lock:
            self._require_shortcut(item.id)
            updated = tuple(item if s.id == item.id else s for s in self._state.shortcuts)
            await self._commit({StateField.SHORTCUTS: updated}, MutationOrigin.LOCAL)
        return item

    async def remove_shortcut(self, shortcut_id: int) -> None:
        async with self._lock:
            self._require_shortcut(shortcut_id)
            remaining = tuple(s for s in self._state.shortcuts if s.id != shortcut_id)
            await self._commit({StateField.SHORTCUTS: remaining}, MutationOrigin.LOCAL)

    async def reorder_shortcuts(self, ordered_ids: Sequence[int]) -> None:
        async with self._lock:
            by_id = {item.id: item for item in self._state.shortcuts}
            if sorted(ordered_ids) != sorted(by_id):
                raise ValidationError(
                    "Reorder must list every shortcut id exactly once",
                    details={"ids": list(ordered_ids)},
                )
            reordered = tuple(by_id[shortcut_id] for shortcut_id in ordered_ids)
            await self._commit({StateField.SHORTCUTS: reordered}, MutationOrigin.LOCAL)

    async def update_grid_config(self, **changes: Any) -> GridConfig:
        async with self._lock:
            config = self._merge(self._state.grid_config, changes)
            await self._commit({StateField.GRID_CONFIG: config}, MutationOrigin.LOCAL)
        return config

    async def update_background_config(self, **changes: Any) -> BackgroundConfig:
        async with self._lock:
            config = self._merge(self._state.background_config, changes)
            await self._commit({StateField.BACKGROUND_CONFIG: config}, MutationOrigin.LOCAL)
        return config

    async def set_background_url(self, url: str) -> str:
        async with self._lock:
            parsed = _parse_background_url(url)
            await self._commit({StateField.BACKGROUND_URL: parsed}, MutationOrigin.LOCAL)
        return parsed

    # ------------------------------------------------------------------
    # Mutations from elsewhere
    # ------------------------------------------------------------------

    async def apply_remote_snapshot(self, snapshot: RemoteSnapshot) -> list[StateField]:
        """Apply each field present in ``snapshot``; invalid fields are skipped.

        Remote values are persisted but do not stamp a local update.
        """
        raw: dict[StateField, Any] = {}
        if snapshot.shortcuts is not None:
            raw[StateField.SHORTCUTS] = snapshot.shortcuts
        if snapshot.grid_config is not None:
            raw[StateField.GRID_CONFIG] = snapshot.grid_config
        if snapshot.bg_config is not None:
            raw[StateField.BACKGROUND_CONFIG] = snapshot.bg_config
        if snapshot.bg_url:
            raw[StateField.BACKGROUND_URL] = snapshot.bg_url

        changes: dict[StateField, Any] = {}
        for field, value in raw.items():
            try:
                changes[field] = _PARSERS[field](value)
            except ValidationError as exc:
                logger.warning(
                    "remote_field_rejected", extra={"field": field.value, "error": exc.message}
                )

        if changes:
            async with self._lock:
                await self._commit(changes, MutationOrigin.REMOTE, stamp=False)
        return list(changes)

    async def adopt_external(self, key: str, value: Any) -> bool:
        """Take over a value another local surface wrote straight to storage.

        The value is already persisted; only the in-memory state and the
        local-update timestamp change. Returns ``False`` for keys that are not
        part of the state or values that fail validation.
        """
        field = next((f for f, k in _FIELD_KEYS.items() if k == key), None)
        if field is None:
            return False
        try:
            parsed = _PARSERS[field](value)
        except ValidationError as exc:
            logger.warning(
                "external_write_rejected", extra={"field": field.value, "error": exc.message}
            )
            return False
        async with self._lock:
            await self._commit({field: parsed}, MutationOrigin.EXTERNAL, persist=False)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_shortcut(self, shortcut_id: int) -> None:
        if not any(item.id == shortcut_id for item in self._state.shortcuts):
            raise ResourceNotFoundError(
                f"Shortcut {shortcut_id} not found", details={"id": shortcut_id}
            )

    @staticmethod
    def _merge(current: M, changes: Mapping[str, Any]) -> M:
        unknown = set(changes) - set(type(current).model_fields)
        if unknown:
            raise ValidationError(
                f"Unknown {type(current).__name__} fields: {', '.join(sorted(unknown))}"
            )
        return _build(type(current), {**current.model_dump(), **changes})

    async def _commit(
        self,
        changes: Mapping[StateField, Any],
        origin: MutationOrigin,
        *,
        stamp: bool = True,
        persist: bool = True,
    ) -> None:
        """Persist, swap the in-memory state, then publish one event per field.

        Caller holds ``self._lock``.
        """
        now = self._clock()
        writes: dict[str, Any] = {}
        if persist:
            writes.update({_FIELD_KEYS[f]: _serialize(f, v) for f, v in changes.items()})
        if stamp:
            writes[StorageKey.LAST_LOCAL_UPDATE] = to_iso(now)
        if writes:
            await self._kv.set_many(writes)

        values = {_STATE_ATTRS[f]: getattr(self._state, _STATE_ATTRS[f]) for f in _STATE_ATTRS}
        values.update({_STATE_ATTRS[f]: v for f, v in changes.items()})
        self._state = LocalState(**values)
        if stamp:
            self._last_local_update_at = now

        logger.debug(
            "local_state_mutated",
            extra={"fields": [f.value for f in changes], "origin": origin.value, "stamped": stamp},
        )
        for field in changes:
            await self._bus.publish(StateMutated(occurred_at=now, field=field, origin=origin))
