"""Per-tracker cooldown and trailing-edge debounce.

Each rate-limited tracker has at most one request in flight and at most one
queued follow-up. A follow-up that arrives while another is already queued
replaces it, so a burst of changes collapses into the first request plus
the latest one. After a request finishes, the next may only start once the
tracker's cooldown has passed.

The limiter is a plain state machine. It never sleeps and never starts
tasks itself: starting requests, arming timers and reading the clock are
all delegated to callables supplied by the engine, which keeps it
deterministic under test.
"""

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from lockstep.protocol.request import RequestDescriptor

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class RunningHandle(Cancellable, Protocol):
    id: int


@dataclass(frozen=True)
class CooldownExpired:
    """Timer message: the cooldown armed with ``token`` has run out."""

    tracker_id: str
    token: int


class LimiterState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COOLDOWN = "cooldown"
    PENDING_REPLACE = "pending_replace"


StartRequest = Callable[[str, RequestDescriptor[Any]], RunningHandle]
ScheduleTimer = Callable[[float, CooldownExpired], Cancellable]
NotifyWaiting = Callable[[str], None]


@dataclass
class TrackerSlot:
    tracker_id: str
    cooldown: float
    running: RunningHandle | None = None
    pending: RequestDescriptor[Any] | None = None
    last_completion: float | None = None
    cooldown_until: float = 0.0
    timer: Cancellable | None = None
    timer_token: int | None = None

    @property
    def state(self) -> LimiterState:
        if self.running is not None:
            return LimiterState.RUNNING
        if self.pending is not None:
            return LimiterState.PENDING_REPLACE
        if self.timer is not None:
            return LimiterState.COOLDOWN
        return LimiterState.IDLE


class RateLimiter:
    def __init__(
        self,
        start: StartRequest,
        schedule: ScheduleTimer,
        clock: Callable[[], float],
        on_waiting: NotifyWaiting | None = None,
    ):
        self._start = start
        self._schedule = schedule
        self._clock = clock
        self._on_waiting = on_waiting
        self._slots: dict[str, TrackerSlot] = {}
        self._tokens = itertools.count(1)

    # ================================
    # Queries
    # ================================

    def __contains__(self, tracker_id: str) -> bool:
        return tracker_id in self._slots

    def state(self, tracker_id: str) -> LimiterState:
        slot = self._slots.get(tracker_id)
        return slot.state if slot is not None else LimiterState.IDLE

    def slot(self, tracker_id: str) -> TrackerSlot | None:
        return self._slots.get(tracker_id)

    def has_pending(self, tracker_id: str) -> bool:
        slot = self._slots.get(tracker_id)
        return slot is not None and slot.pending is not None

    def running_id(self, tracker_id: str) -> int | None:
        slot = self._slots.get(tracker_id)
        if slot is None or slot.running is None:
            return None
        return slot.running.id

    # ================================
    # Transitions
    # ================================

    def submit(
        self, tracker_id: str, request: RequestDescriptor[Any], cooldown: float
    ) -> None:
        """Ask for ``request`` to run on ``tracker_id``.

        Starts it right away when the tracker is idle. Otherwise it becomes
        the pending follow-up, replacing any earlier one.
        """
        slot = self._slots.get(tracker_id)
        if slot is None:
            slot = TrackerSlot(tracker_id=tracker_id, cooldown=cooldown)
            self._slots[tracker_id] = slot
        else:
            slot.cooldown = cooldown

        if slot.running is not None:
            self._set_pending(slot, request)
            return

        now = self._clock()
        if now < slot.cooldown_until:
            self._set_pending(slot, request)
            if slot.timer is None:
                self._arm(slot, slot.cooldown_until - now)
            return

        # Cooldown already over, the timer message just has not arrived yet.
        self._disarm(slot)
        self._run(slot, request)

    def complete(self, tracker_id: str, operation_id: int) -> bool:
        """Record that a running request finished, with any outcome.

        Returns:
            bool: False if ``operation_id`` is not the tracker's running
                request, in which case nothing changes.
        """
        slot = self._slots.get(tracker_id)
        if slot is None or slot.running is None or slot.running.id != operation_id:
            return False

        now = self._clock()
        slot.running = None
        slot.last_completion = now
        slot.cooldown_until = now + slot.cooldown

        if slot.pending is not None:
            request, slot.pending = slot.pending, None
            self._run(slot, request)
        elif slot.cooldown > 0:
            self._arm(slot, slot.cooldown)
        else:
            del self._slots[tracker_id]
        return True

    def expire(self, message: CooldownExpired) -> None:
        """Handle a cooldown timer firing. Stale timers are ignored."""
        slot = self._slots.get(message.tracker_id)
        if slot is None or slot.timer_token != message.token:
            return

        slot.timer = None
        slot.timer_token = None

        if slot.running is not None:
            return
        if slot.pending is not None:
            request, slot.pending = slot.pending, None
            self._run(slot, request)
        else:
            del self._slots[message.tracker_id]

    def cancel(self, tracker_id: str) -> None:
        """Tear the tracker down from any state and forget it."""
        slot = self._slots.pop(tracker_id, None)
        if slot is None:
            return

        slot.pending = None
        self._disarm(slot)
        if slot.running is not None:
            slot.running.cancel()
            slot.running = None
        logger.debug(f"Rate limiter released tracker '{tracker_id}'")

    def cancel_all(self) -> None:
        for tracker_id in list(self._slots):
            self.cancel(tracker_id)

    # ================================
    # Helpers
    # ================================

    def _run(self, slot: TrackerSlot, request: RequestDescriptor[Any]) -> None:
        slot.running = self._start(slot.tracker_id, request)

    def _set_pending(self, slot: TrackerSlot, request: RequestDescriptor[Any]) -> None:
        if slot.pending is not None:
            logger.debug(
                f"Coalesced pending request {slot.pending.url} on '{slot.tracker_id}'"
            )
            if self._on_waiting is not None:
                self._on_waiting(slot.tracker_id)
        slot.pending = request

    def _arm(self, slot: TrackerSlot, delay: float) -> None:
        self._disarm(slot)
        token = next(self._tokens)
        slot.timer_token = token
        slot.timer = self._schedule(max(0.0, delay), CooldownExpired(slot.tracker_id, token))

    def _disarm(self, slot: TrackerSlot) -> None:
        if slot.timer is not None:
            slot.timer.cancel()
        slot.timer = None
        slot.timer_token = None
