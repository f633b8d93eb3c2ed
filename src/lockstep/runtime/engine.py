"""Control loop for tracked HTTP requests.

The application states which requests it wants by handing the engine a
full ``tracker id -> request`` set whenever that set changes. The engine
diffs it against what is running, cancels what is no longer wanted, starts
what is new, and relays progress and outcomes to subscribers.

All engine state lives on one ``RequestEngine`` instance and is only
touched by its control loop task. Operations and timers run concurrently
but only ever post messages back into the loop.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from functools import partial
from types import TracebackType
from typing import Any, Self

from lockstep.config import EngineSettings
from lockstep.errors import EngineNotRunningError
from lockstep.protocol.errors import Result
from lockstep.protocol.events import Outcome, Waiting
from lockstep.protocol.request import RequestDescriptor
from lockstep.runtime.operation import Operation, OperationFinished, OperationProgress
from lockstep.runtime.rate_limiter import CooldownExpired, RateLimiter
from lockstep.runtime.reconciler import ReconcilePlan, desired_set, diff
from lockstep.runtime.registry import RegistryEntry, TrackerRegistry
from lockstep.runtime.relay import Handler, ProgressRelay, Subscription, ToMsg
from lockstep.transport.base import Transport

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[Result[Any]], Awaitable[None] | None]
DesiredRequests = Mapping[str, RequestDescriptor[Any]] | Sequence[RequestDescriptor[Any]]


@dataclass(frozen=True)
class SendUntracked:
    operation: Operation
    on_outcome: OutcomeCallback | None


@dataclass(frozen=True)
class TrackerWaiting:
    tracker_id: str


class RequestEngine:
    """Keeps the running requests in line with the desired ones.

    Typical use::

        async with RequestEngine(HttpxTransport()) as engine:
            engine.subscribe("avatar", on_avatar_event)
            await engine.update({"avatar": get(url, expect=expect_bytes())})
    """

    def __init__(self, transport: Transport, settings: EngineSettings | None = None):
        self.transport = transport
        self.settings = settings or EngineSettings()
        self.registry = TrackerRegistry()
        self.relay = ProgressRelay()
        self.limiter = RateLimiter(
            start=self._start_limited,
            schedule=self._schedule_timer,
            clock=self._now,
            on_waiting=self._notify_waiting,
        )
        self.last_plan: ReconcilePlan | None = None

        self._desired_updates: asyncio.Queue[dict[str, RequestDescriptor[Any]]] = (
            asyncio.Queue()
        )
        self._internal: asyncio.Queue[Any] = asyncio.Queue()
        self._operations: dict[int, Operation] = {}
        self._untracked: dict[int, OutcomeCallback | None] = {}
        self._loop_task: asyncio.Task[None] | None = None

    # ================================
    # Lifecycle
    # ================================

    @property
    def running(self) -> bool:
        """True if the control loop is actively processing messages."""
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        """Start the control loop.

        Safe to call multiple times - subsequent calls are ignored if already
        running.
        """
        if self.running:
            return

        self._loop_task = asyncio.create_task(
            self._control_loop(), name="lockstep-control-loop"
        )
        self._loop_task.add_done_callback(self._on_loop_done)
        logger.debug("Request engine started")

    async def stop(self) -> None:
        """Stop the loop and cancel every request and timer.

        Subscriptions survive a stop; everything else is cleared. Safe to
        call multiple times.
        """
        # Captured first: the loop's done callback tears state down as well.
        operations = list(self._operations.values())

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        self._teardown()
        for operation in operations:
            await operation.wait()
        logger.debug("Request engine stopped")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
        return None

    # ================================
    # Application API
    # ================================

    async def update(self, desired: DesiredRequests) -> None:
        """Declare the complete set of tracked requests you want running.

        Args:
            desired: Mapping of tracker id to request, or a sequence of
                requests that each carry their own tracker id. Trackers
                missing from the set are cancelled.

        Raises:
            EngineNotRunningError: If the engine has not been started.
            InvalidDesiredSetError: If a request is untracked or a tracker id
                is used twice.
        """
        self._ensure_running()
        self._desired_updates.put_nowait(desired_set(desired))

    async def send(
        self,
        request: RequestDescriptor[Any],
        on_outcome: OutcomeCallback | None = None,
    ) -> Operation:
        """Fire off a request outside of reconciliation.

        The request is never compared, coalesced or cancelled by an update,
        and no progress events are routed for it, even if it carries a
        tracker id. ``on_outcome`` receives its result.

        Returns:
            Operation: Handle whose ``cancel()`` abandons the request. A
                cancelled request reports no outcome.
        """
        self._ensure_running()
        operation = Operation(self.transport, request, self._post)
        self._post(SendUntracked(operation, on_outcome))
        return operation

    def subscribe(
        self, tracker_id: str, handler: Handler, to_msg: ToMsg | None = None
    ) -> Subscription:
        """Listen to progress, waiting and outcome events of a tracker."""
        return self.relay.subscribe(tracker_id, handler, to_msg)

    def tracked_ids(self) -> list[str]:
        """Sorted ids of the trackers that currently have a registry entry."""
        return self.registry.tracker_ids()

    async def drain(self) -> None:
        """Wait until every message queued so far has been processed.

        Requests still in flight are not awaited.
        """
        await self._desired_updates.join()
        await self._internal.join()

    # ================================
    # Control loop
    # ================================

    async def _control_loop(self) -> None:
        """Serve desired-set updates and internal messages, one at a time.

        A failure while handling one message is logged and does not stop
        the loop.
        """
        desired_get: asyncio.Task[Any] | None = None
        internal_get: asyncio.Task[Any] | None = None
        try:
            while True:
                if desired_get is None:
                    desired_get = asyncio.create_task(self._desired_updates.get())
                if internal_get is None:
                    internal_get = asyncio.create_task(self._internal.get())

                done, _ = await asyncio.wait(
                    {desired_get, internal_get}, return_when=asyncio.FIRST_COMPLETED
                )

                if internal_get in done:
                    message = internal_get.result()
                    internal_get = None
                    try:
                        await self._handle_internal(message)
                    except Exception:
                        logger.exception(f"Error handling internal message {message!r}")
                    finally:
                        self._internal.task_done()

                if desired_get in done:
                    desired = desired_get.result()
                    desired_get = None
                    try:
                        await self._reconcile(desired)
                    except Exception:
                        logger.exception("Error reconciling desired requests")
                    finally:
                        self._desired_updates.task_done()
        finally:
            pending_gets = (
                (desired_get, self._desired_updates),
                (internal_get, self._internal),
            )
            for getter, queue in pending_gets:
                if getter is None:
                    continue
                if getter.done() and not getter.cancelled():
                    # Taken off the queue but never handled; dropped like
                    # everything else still queued at stop.
                    queue.task_done()
                else:
                    getter.cancel()

    def _on_loop_done(self, task: asyncio.Task[None]) -> None:
        """Clean up when the loop exits without stop() being called."""
        if self._loop_task is task:
            self._loop_task = None
            self._teardown()

    def _teardown(self) -> None:
        for entry in self.registry:
            entry.cancel()
        self.registry.clear()
        self.limiter.cancel_all()

        for operation in list(self._operations.values()):
            operation.cancel()
        self._operations.clear()
        self._untracked.clear()

        for queue in (self._desired_updates, self._internal):
            while not queue.empty():
                queue.get_nowait()
                queue.task_done()

    # ================================
    # Reconciliation
    # ================================

    async def _reconcile(self, desired: dict[str, RequestDescriptor[Any]]) -> None:
        plan = diff(self.registry.fingerprints(), desired)
        self.last_plan = plan

        # A changed request on a rate-limited tracker is handed to the
        # limiter to coalesce instead of replacing the running one.
        coalesced = {
            tracker_id
            for tracker_id in plan.changed
            if self._coalesces(tracker_id)
        }

        for tracker_id in plan.dead:
            if tracker_id in coalesced:
                continue
            entry = self.registry.remove(tracker_id)
            if entry is not None:
                entry.cancel()
                logger.debug(f"Tracker '{tracker_id}' no longer wanted; cancelled")

        for tracker_id in plan.new:
            request = desired[tracker_id]
            if tracker_id in coalesced:
                entry = self.registry.get(tracker_id)
                entry.replace_request(request)
                self.limiter.submit(
                    tracker_id, request, self.settings.cooldown_for(tracker_id)
                )
            else:
                self._spawn(tracker_id, request)

    def _coalesces(self, tracker_id: str) -> bool:
        entry = self.registry.get(tracker_id)
        return (
            entry is not None
            and entry.rate_limited
            and self.settings.cooldown_for(tracker_id) is not None
        )

    def _spawn(self, tracker_id: str, request: RequestDescriptor[Any]) -> None:
        cooldown = self.settings.cooldown_for(tracker_id)

        if cooldown is not None:
            entry = RegistryEntry(
                tracker_id=tracker_id,
                request=request,
                cancel=partial(self.limiter.cancel, tracker_id),
                rate_limited=True,
            )
            self.registry.add(entry)
            self.limiter.submit(tracker_id, request, cooldown)
            return

        operation = Operation(self.transport, request, self._post, tracker_id)
        self.registry.add(
            RegistryEntry(
                tracker_id=tracker_id,
                request=request,
                cancel=operation.cancel,
                operation_id=operation.id,
            )
        )
        self._launch(operation)

    def _start_limited(
        self, tracker_id: str, request: RequestDescriptor[Any]
    ) -> Operation:
        operation = Operation(self.transport, request, self._post, tracker_id)
        entry = self.registry.get(tracker_id)
        if entry is not None:
            entry.operation_id = operation.id
            entry.settled = False
        self._launch(operation)
        return operation

    def _launch(self, operation: Operation) -> None:
        self._operations[operation.id] = operation
        operation.start()
        operation.add_done_callback(self._forget)

    def _forget(self, operation: Operation) -> None:
        self._operations.pop(operation.id, None)
        # A cancelled request never posts its outcome.
        if operation.cancelled:
            self._untracked.pop(operation.id, None)

    # ================================
    # Internal messages
    # ================================

    async def _handle_internal(self, message: Any) -> None:
        match message:
            case OperationProgress(operation_id=operation_id, tracker_id=tracker_id):
                if self.registry.is_current(tracker_id, operation_id):
                    await self.relay.dispatch(tracker_id, message.event)
            case OperationFinished(tracker_id=None):
                await self._finish_untracked(message)
            case OperationFinished():
                await self._finish_tracked(message)
            case CooldownExpired():
                self.limiter.expire(message)
            case TrackerWaiting(tracker_id=tracker_id):
                if tracker_id in self.registry:
                    await self.relay.dispatch(tracker_id, Waiting())
            case SendUntracked(operation=operation, on_outcome=on_outcome):
                if operation.cancelled:
                    return
                self._untracked[operation.id] = on_outcome
                self._launch(operation)
            case _:
                logger.warning(f"Unknown internal message: {message!r}")

    async def _finish_tracked(self, message: OperationFinished) -> None:
        tracker_id = message.tracker_id
        if not self.registry.is_current(tracker_id, message.operation_id):
            return

        entry = self.registry.get(tracker_id)
        entry.settled = True
        await self.relay.dispatch(tracker_id, Outcome(result=message.result))

        if entry.rate_limited:
            self.limiter.complete(tracker_id, message.operation_id)

    async def _finish_untracked(self, message: OperationFinished) -> None:
        if message.operation_id not in self._untracked:
            return
        on_outcome = self._untracked.pop(message.operation_id)
        if on_outcome is None:
            return
        try:
            result = on_outcome(message.result)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Outcome callback failed: {e!r}")

    # ================================
    # Helpers
    # ================================

    def _post(self, message: Any) -> None:
        self._internal.put_nowait(message)

    def _notify_waiting(self, tracker_id: str) -> None:
        self._post(TrackerWaiting(tracker_id))

    def _schedule_timer(
        self, delay: float, message: CooldownExpired
    ) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, self._post, message)

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    def _ensure_running(self) -> None:
        if not self.running:
            raise EngineNotRunningError("Request engine is not running")
