"""Save coordinator — periodic and event-driven snapshots of session state.

Lifecycle of one save cycle:

    idle/saved/error ──trigger──▶ saving ──▶ saved   (total_saves += 1)
                                        ├──▶ error   (message + retryable)
                                        └──▶ back to the previous state
                                             (session not active, skipped)

At most one cycle is in flight. A trigger that arrives while a cycle is
running does not start a second one: its reason is recorded on the status
(coalesced_reasons) and the caller waits for the running cycle and gets an
outcome marked coalesced=True.

Manual and periodic triggers start a cycle at once. Scene-change and
player-choice triggers are debounced: a burst of them inside the quiet period
collapses into one cycle, run for the last reason of the burst.

Only sessions whose status is "active" are saved automatically; a manual save
always goes through. The snapshot provider and the persistence sink are
injected and may be plain functions or coroutines. Any exception from either
lands in the same error path; nothing propagates to the caller.

Typical use inside a running event loop:

    coordinator = SaveCoordinator(provider, store, is_session_active=lambda: session.active)
    coordinator.start()
    await coordinator.trigger_save(SaveTrigger.SCENE_CHANGE)
    ...
    coordinator.stop()
    await coordinator.wait_idle()
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Union

from rpg_narrator.config import Settings
from rpg_narrator.errors import classify_error
from rpg_narrator.models import (
    GameStateSnapshot,
    SaveOutcome,
    SaveState,
    SaveStatus,
    SaveTrigger,
    utcnow,
)
from rpg_narrator.storage import SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5 * 60
DEFAULT_DEBOUNCE_SECONDS = 0.5
ACTIVE_SESSION_STATUS = "active"

SnapshotProvider = Callable[[], Union[GameStateSnapshot, dict, Awaitable[Any]]]
PersistenceSink = Callable[[GameStateSnapshot], Any]
StatusListener = Callable[[SaveStatus], None]

_IMMEDIATE = {SaveTrigger.MANUAL, SaveTrigger.PERIODIC}


class SaveCoordinator:
    """Single-flight persistence of game-state snapshots.

    Args:
        snapshot_provider: Returns the current game state (model or dict).
        sink:              Persists a snapshot; raising signals failure.
        interval_seconds:  Period of the automatic save timer.
        debounce_seconds:  Quiet period for scene-change and player-choice
                           triggers; 0 saves on every trigger.
        is_session_active: Whether the session is in an active lifecycle
                           state; set_enabled(True) only re-arms the timer then.
        clock:             Completion timestamps for last_save_time.
    """

    def __init__(
        self,
        snapshot_provider: SnapshotProvider,
        sink: PersistenceSink,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        is_session_active: Callable[[], bool] = lambda: True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        if debounce_seconds < 0:
            raise ValueError(f"debounce_seconds must be >= 0, got {debounce_seconds}")
        self._provider = snapshot_provider
        self._sink = sink
        self._interval = interval_seconds
        self._debounce = debounce_seconds
        self._is_session_active = is_session_active
        self._clock = clock

        self._status = SaveStatus()
        self._enabled = True
        self._timer: asyncio.Task | None = None
        self._in_flight: asyncio.Task | None = None
        self._in_flight_reason: SaveTrigger | None = None
        self._before_cycle = self._status
        self._listeners: list[StatusListener] = []

        # debounced burst waiting for its quiet period
        self._pending: asyncio.Task | None = None
        self._pending_reason: SaveTrigger | None = None
        self._pending_ticket = 0
        self._pending_coalesced: list[SaveTrigger] = []
        self._deadline = 0.0
        self._tickets = itertools.count(1)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def status(self) -> SaveStatus:
        """A copy of the current status; mutating it has no effect."""
        return self._status.model_copy(deep=True)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_running(self) -> bool:
        """True while the periodic timer is armed."""
        return self._timer is not None and not self._timer.done()

    @property
    def is_saving(self) -> bool:
        return self._in_flight is not None

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def _set_status(self, **fields: Any) -> None:
        self._status = self._status.model_copy(update=fields)
        snapshot = self.status
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("save status listener failed")

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Arm the periodic timer. Must be called from a running event loop."""
        if not self._enabled:
            logger.info("auto-save disabled; not starting timer")
            return
        if self.is_running:
            return
        self._timer = asyncio.get_running_loop().create_task(self._tick_loop())
        logger.info("auto-save timer started (every %ss)", self._interval)

    def stop(self) -> None:
        """Disarm the timer. A save already in flight or debounced still completes."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.info("auto-save timer stopped")

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.trigger_save(SaveTrigger.PERIODIC)

    def set_enabled(self, enabled: bool) -> None:
        """Turn the periodic timer on or off. Save history is kept either way."""
        self._enabled = enabled
        if not enabled:
            self.stop()
        elif self._is_session_active():
            self.start()

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def trigger_save(self, reason: SaveTrigger | str) -> SaveOutcome:
        """Request a save. Joins the running cycle instead of starting a second one."""
        reason = SaveTrigger(reason)

        if not self._enabled and reason is SaveTrigger.PERIODIC:
            logger.debug("auto-save disabled; skipping periodic trigger")
            return SaveOutcome(reason=reason, skipped=True, status=self.status)

        if self._in_flight is not None:
            return await self._join(reason)
        if reason in _IMMEDIATE or self._debounce == 0:
            return await self._run_cycle(reason)
        return await self._debounced(reason)

    async def retry(self) -> SaveOutcome | None:
        """Re-issue a manual save after a failure. Only valid from the error state."""
        if self._status.state is not SaveState.ERROR:
            logger.info("retry ignored: save status is %s", self._status.state.value)
            return None
        return await self.trigger_save(SaveTrigger.MANUAL)

    async def wait_idle(self) -> None:
        """Wait until no save is pending or in flight."""
        while self._pending is not None or self._in_flight is not None:
            await asyncio.shield(self._pending or self._in_flight)

    async def _join(self, reason: SaveTrigger) -> SaveOutcome:
        joined = self._in_flight_reason
        logger.debug("save in flight (%s); coalescing %s", joined.value, reason.value)
        self._set_status(coalesced_reasons=[*self._status.coalesced_reasons, reason])
        skipped = await asyncio.shield(self._in_flight)
        return SaveOutcome(
            reason=reason, coalesced=True, joined_reason=joined,
            skipped=skipped, status=self.status,
        )

    async def _run_cycle(
        self, reason: SaveTrigger, coalesced: list[SaveTrigger] | None = None
    ) -> SaveOutcome:
        self._before_cycle = self._status
        self._set_status(
            state=SaveState.SAVING,
            last_reason=reason,
            coalesced_reasons=list(coalesced or []),
            error_message=None,
            retryable=False,
        )
        self._in_flight_reason = reason
        self._in_flight = asyncio.get_running_loop().create_task(self._perform_save(reason))
        skipped = await asyncio.shield(self._in_flight)
        return SaveOutcome(reason=reason, skipped=skipped, status=self.status)

    async def _debounced(self, reason: SaveTrigger) -> SaveOutcome:
        loop = asyncio.get_running_loop()
        ticket = next(self._tickets)
        self._deadline = loop.time() + self._debounce
        if self._pending_reason is not None:
            self._pending_coalesced.append(self._pending_reason)
        self._pending_reason = reason
        self._pending_ticket = ticket
        if self._pending is None:
            self._pending = loop.create_task(self._fire_after_quiet())
        pending = self._pending

        fired_ticket, outcome = await asyncio.shield(pending)
        if fired_ticket == ticket:
            return outcome
        return SaveOutcome(
            reason=reason, coalesced=True, joined_reason=outcome.reason,
            skipped=outcome.skipped, status=self.status,
        )

    async def _fire_after_quiet(self) -> tuple[int, SaveOutcome]:
        loop = asyncio.get_running_loop()
        while True:
            remaining = self._deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)

        reason, ticket = self._pending_reason, self._pending_ticket
        coalesced = self._pending_coalesced
        self._pending = None
        self._pending_reason = None
        self._pending_coalesced = []
        if self._in_flight is not None:
            return ticket, await self._join(reason)
        logger.debug("debounced %d trigger(s) into one %s save", len(coalesced) + 1, reason.value)
        return ticket, await self._run_cycle(reason, coalesced)

    # ------------------------------------------------------------------
    # Save cycle
    # ------------------------------------------------------------------

    async def _perform_save(self, reason: SaveTrigger) -> bool:
        """Run one cycle. Returns True when the save was skipped."""
        external = True
        skipped = False
        try:
            raw = await _resolve(self._provider())
            external = False
            snapshot = _to_snapshot(raw)
            if snapshot.session.status != ACTIVE_SESSION_STATUS and reason is not SaveTrigger.MANUAL:
                logger.info(
                    "session %s is %s; skipping %s save",
                    snapshot.session.id, snapshot.session.status, reason.value,
                )
                skipped = True
            else:
                external = True
                await _resolve(self._sink(snapshot))
        except Exception as e:
            failure = classify_error(e, external=external)
            logger.warning(
                "save failed (%s, %s, retryable=%s): %s",
                reason.value, failure.kind.value, failure.retryable, failure.message,
            )
            self._set_status(
                state=SaveState.ERROR,
                error_message=failure.message,
                retryable=failure.retryable,
            )
        else:
            if skipped:
                before = self._before_cycle
                self._set_status(
                    state=before.state,
                    error_message=before.error_message,
                    retryable=before.retryable,
                )
            else:
                self._set_status(
                    state=SaveState.SAVED,
                    last_save_time=self._clock(),
                    total_saves=self._status.total_saves + 1,
                )
                logger.info("saved session %s (%s)", snapshot.session.id, reason.value)
        finally:
            self._in_flight = None
            self._in_flight_reason = None
        return skipped


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _to_snapshot(raw: Any) -> GameStateSnapshot:
    if isinstance(raw, GameStateSnapshot):
        return raw.model_copy(deep=True)
    return GameStateSnapshot.model_validate(copy.deepcopy(raw))


def create_save_coordinator(
    settings: Settings,
    snapshot_provider: SnapshotProvider,
    *,
    is_session_active: Callable[[], bool] = lambda: True,
) -> SaveCoordinator:
    """Coordinator writing to the on-disk SnapshotStore under settings.data_dir."""
    return SaveCoordinator(
        snapshot_provider,
        SnapshotStore(settings.data_dir),
        interval_seconds=settings.autosave_interval_seconds,
        debounce_seconds=settings.autosave_debounce_seconds,
        is_session_active=is_session_active,
    )
