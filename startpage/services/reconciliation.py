"""Reconciliation between the local state and the remote snapshot.

Pulls run on start-up, on a timer, when the view becomes visible again and
right after logging in. Pushes are debounced: each local mutation restarts a
timer and only the state after a quiet period is sent.

A pull moves the engine through ``PullPhase``::

    IDLE -> PULLING -> SETTLING -> IDLE

While the phase is not IDLE, mutations do not schedule a push, so the values a
pull writes into the local store are never echoed back to the server. The
SETTLING window (``SYNC_PULL_SETTLE_MS``) covers event handlers that react to
the applied values after the pull itself has returned.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from startpage.adapters.remote.client import RemoteSyncError
from startpage.core.async_utils import BackgroundTasks
from startpage.core.time_utils import to_iso
from startpage.core.url_utils import mask_email
from startpage.domain.events.state_events import MutationOrigin, StateMutated

if TYPE_CHECKING:
    from datetime import datetime

    from startpage.adapters.remote.client import RemoteSyncClient
    from startpage.adapters.remote.models import PushAcknowledgement, RemoteSnapshot
    from startpage.config import SyncConfig
    from startpage.domain.models.state import SyncSession
    from startpage.infrastructure.messaging.event_bus import EventBus
    from startpage.services.state_store import LocalStateStore

logger = logging.getLogger(__name__)


class PullPhase(StrEnum):
    IDLE = "idle"
    PULLING = "pulling"
    SETTLING = "settling"


class PullOutcome(StrEnum):
    LOGGED_OUT = "logged_out"
    SKIPPED = "skipped"
    NO_SNAPSHOT = "no_snapshot"
    APPLIED = "applied"
    LOCAL_AUTHORITATIVE = "local_authoritative"
    FAILED = "failed"
    DISCARDED = "discarded"


class Reconciler(Protocol):
    def remote_wins(
        self,
        *,
        local_updated_at: datetime | None,
        last_sync_at: datetime | None,
        snapshot: RemoteSnapshot,
    ) -> bool: ...


class LastWriteWinsReconciler:
    """Whole-snapshot last-write-wins on the device's own timestamps.

    The remote snapshot replaces local state when nothing was ever edited
    locally, or when the last successful sync is strictly newer than the last
    local edit.
    """

    def remote_wins(
        self,
        *,
        local_updated_at: datetime | None,
        last_sync_at: datetime | None,
        snapshot: RemoteSnapshot,
    ) -> bool:
        if local_updated_at is None:
            return True
        return last_sync_at is not None and last_sync_at > local_updated_at


@dataclass(frozen=True)
class SyncStatus:
    authenticated: bool
    email: str | None
    last_sync_at: datetime | None
    last_local_update_at: datetime | None
    phase: PullPhase
    push_pending: bool

    def as_dict(self) -> dict[str, object]:
        return {
            "authenticated": self.authenticated,
            "email": self.email,
            "last_sync_at": to_iso(self.last_sync_at),
            "last_local_update_at": to_iso(self.last_local_update_at),
            "phase": self.phase.value,
            "push_pending": self.push_pending,
        }


class ReconciliationEngine:
    def __init__(
        self,
        store: LocalStateStore,
        client: RemoteSyncClient,
        event_bus: EventBus,
        cfg: SyncConfig,
        *,
        reconciler: Reconciler | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._bus = event_bus
        self._cfg = cfg
        self._reconciler = reconciler or LastWriteWinsReconciler()
        self._phase = PullPhase.IDLE
        self._idle = asyncio.Event()
        self._idle.set()
        self._settle_handle: asyncio.TimerHandle | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._pushes = BackgroundTasks("sync_push")
        self._subscribed = False

    @property
    def phase(self) -> PullPhase:
        return self._phase

    @property
    def push_pending(self) -> bool:
        return self._debounce_task is not None and not self._debounce_task.done()

    def status(self) -> SyncStatus:
        session = self._client.session
        return SyncStatus(
            authenticated=self._client.is_authenticated(),
            email=session.email,
            last_sync_at=self._client.last_sync_at,
            last_local_update_at=self._store.last_local_update_at,
            phase=self._phase,
            push_pending=self.push_pending,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> PullOutcome:
        """Begin watching local mutations and run the start-up pull."""
        if not self._subscribed:
            self._bus.subscribe(StateMutated, self._on_state_mutated)
            self._subscribed = True
        return await self.pull("startup")

    async def stop(self) -> None:
        if self._subscribed:
            self._bus.unsubscribe(StateMutated, self._on_state_mutated)
            self._subscribed = False
        self._cancel_debounce()
        if self._settle_handle is not None:
            self._settle_handle.cancel()
            self._settle_handle = None
        self._set_phase(PullPhase.IDLE)
        await self._pushes.cancel_all()

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def pull(self, trigger: str = "manual") -> PullOutcome:
        """Fetch the remote snapshot and apply it if it wins reconciliation.

        Errors are logged and reported as ``PullOutcome.FAILED``; they are not
        raised. A pull that overlaps another is skipped.
        """
        if not self._client.is_authenticated():
            return PullOutcome.LOGGED_OUT
        if self._phase is not PullPhase.IDLE:
            logger.debug("sync_pull_skipped", extra={"trigger": trigger, "phase": self._phase.value})
            return PullOutcome.SKIPPED

        self._set_phase(PullPhase.PULLING)
        generation = self._client.session_generation
        settle = False
        try:
            try:
                snapshot = await self._client.pull()
            except RemoteSyncError as exc:
                logger.warning(
                    "sync_pull_failed",
                    extra={
                        "trigger": trigger,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "status_code": exc.status_code,
                    },
                )
                return PullOutcome.FAILED

            if generation != self._client.session_generation:
                logger.info("sync_pull_discarded", extra={"trigger": trigger})
                return PullOutcome.DISCARDED
            if snapshot is None:
                logger.info("sync_pull_empty", extra={"trigger": trigger})
                return PullOutcome.NO_SNAPSHOT

            settle = True
            local_updated_at = self._store.last_local_update_at
            last_sync_at = self._client.last_sync_at
            if not self._reconciler.remote_wins(
                local_updated_at=local_updated_at, last_sync_at=last_sync_at, snapshot=snapshot
            ):
                logger.info(
                    "sync_pull_local_authoritative",
                    extra={
                        "trigger": trigger,
                        "last_local_update": to_iso(local_updated_at),
                        "last_sync": to_iso(last_sync_at),
                    },
                )
                return PullOutcome.LOCAL_AUTHORITATIVE

            applied = await self._store.apply_remote_snapshot(snapshot)
            logger.info(
                "sync_pull_applied",
                extra={"trigger": trigger, "fields": [field.value for field in applied]},
            )
            return PullOutcome.APPLIED
        except Exception:
            settle = False
            logger.exception("sync_pull_crashed", extra={"trigger": trigger})
            return PullOutcome.FAILED
        finally:
            if settle:
                self._enter_settling()
            else:
                self._set_phase(PullPhase.IDLE)

    def _enter_settling(self) -> None:
        self._set_phase(PullPhase.SETTLING)
        loop = asyncio.get_running_loop()
        self._settle_handle = loop.call_later(self._cfg.pull_settle_sec, self._end_settling)

    def _end_settling(self) -> None:
        self._settle_handle = None
        if self._phase is PullPhase.SETTLING:
            self._set_phase(PullPhase.IDLE)

    def _set_phase(self, phase: PullPhase) -> None:
        self._phase = phase
        if phase is PullPhase.IDLE:
            self._idle.set()
        else:
            self._idle.clear()

    async def wait_settled(self) -> None:
        """Return once no pull is running or settling.

        Local edits made before this returns are not pushed, so one-shot
        callers wait here before mutating.
        """
        await self._idle.wait()

    async def on_visibility_change(self, visible: bool) -> PullOutcome | None:
        if not visible:
            return None
        return await self.pull("visibility")

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def _on_state_mutated(self, event: StateMutated) -> None:
        if event.origin is MutationOrigin.REMOTE or not self._client.is_authenticated():
            return
        if self._phase is not PullPhase.IDLE:
            logger.debug(
                "sync_push_suppressed",
                extra={"field": event.field.value, "origin": event.origin.value, "phase": self._phase.value},
            )
            return
        self._schedule_push()

    def _schedule_push(self) -> None:
        self._cancel_debounce()
        self._debounce_task = asyncio.create_task(self._debounced_push(), name="sync_push_debounce")

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    async def _debounced_push(self) -> None:
        await asyncio.sleep(self._cfg.push_debounce_sec)
        # Detach so a mutation arriving mid-request restarts the timer without
        # cancelling the request already on the wire.
        self._pushes.spawn(self._push_in_background(), label="debounced")

    async def _push_in_background(self) -> None:
        if not self._client.is_authenticated():
            return
        if self._phase is not PullPhase.IDLE:
            logger.info("sync_push_skipped_during_pull", extra={"phase": self._phase.value})
            return
        payload = self._store.state.to_push_payload()
        try:
            await self._client.push(payload)
        except RemoteSyncError as exc:
            logger.warning(
                "sync_auto_push_failed",
                extra={"error": str(exc), "error_type": type(exc).__name__, "status_code": exc.status_code},
            )

    async def wait_for_pushes(self) -> None:
        """Wait for a pending debounce and any push it started."""
        while self.push_pending:
            task = self._debounce_task
            if task is not None:
                await asyncio.gather(task, return_exceptions=True)
        await self._pushes.drain()

    async def sync_now(self) -> PushAcknowledgement:
        """Push the current state immediately, ignoring debounce and the pull guard.

        Raises:
            RemoteSyncError: Any failure, for the caller to show to the user.
        """
        self._cancel_debounce()
        ack = await self._client.push(self._store.state.to_push_payload())
        logger.info("sync_manual_push_succeeded", extra={"updated_at": ack.updated_at})
        return ack

    # ------------------------------------------------------------------
    # Account actions
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str) -> SyncSession:
        session = await self._client.register(email, password)
        await self.pull("register")
        return session

    async def login(self, email: str, password: str) -> SyncSession:
        session = await self._client.login(email, password)
        logger.info("sync_login_pulling", extra={"email": mask_email(session.email)})
        await self.pull("login")
        return session

    async def logout(self) -> None:
        self._cancel_debounce()
        await self._client.logout()
