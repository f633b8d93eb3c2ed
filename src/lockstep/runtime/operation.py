"""One in-flight exchange and the messages it posts back to the engine."""

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from lockstep.protocol.errors import BadBody, Err, NetworkError, Result
from lockstep.protocol.events import Receiving, Sending
from lockstep.protocol.expect import expect_bytes
from lockstep.protocol.request import RequestDescriptor
from lockstep.protocol.response import GoodStatusResponse, RawResponse
from lockstep.transport.base import Transport

logger = logging.getLogger(__name__)

_operation_ids = itertools.count(1)


@dataclass(frozen=True)
class OperationProgress:
    operation_id: int
    tracker_id: str | None
    event: Sending | Receiving


@dataclass(frozen=True)
class OperationFinished:
    operation_id: int
    tracker_id: str | None
    result: Result[Any]


OperationMessage = OperationProgress | OperationFinished
Post = Callable[[Any], None]


class Operation:
    """A transport exchange running in its own task.

    The operation never touches engine state. Everything it learns is
    posted as a message tagged with its id, so the engine can tell a live
    operation's messages from those of one it already cancelled.
    """

    def __init__(
        self,
        transport: Transport,
        request: RequestDescriptor[Any],
        post: Post,
        tracker_id: str | None = None,
    ):
        self.id = next(_operation_ids)
        self.tracker_id = tracker_id
        self.request = request
        self._transport = transport
        self._post = post
        self._task: asyncio.Task[None] | None = None
        self.cancelled = False

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def start(self) -> "Operation":
        """Start the exchange in a background task. Returns self.

        Does nothing if already started, or cancelled before it started.
        """
        if self._task is not None or self.cancelled:
            return self
        self._task = asyncio.create_task(
            self._run(), name=f"exchange-{self.tracker_id or 'untracked'}-{self.id}"
        )
        logger.debug(
            f"Started operation {self.id} for tracker {self.tracker_id!r}: "
            f"{self.request.method} {self.request.url}"
        )
        return self

    def cancel(self) -> None:
        """Cancel the exchange. Safe to call repeatedly or after completion."""
        if self.cancelled:
            return
        self.cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug(f"Cancelled operation {self.id} ({self.tracker_id!r})")

    def add_done_callback(self, callback: Callable[["Operation"], None]) -> None:
        """Run ``callback(self)`` once the task ends, however it ends.

        Raises:
            RuntimeError: If the operation was never started.
        """
        if self._task is None:
            raise RuntimeError(f"Operation {self.id} has not been started")
        self._task.add_done_callback(lambda _: callback(self))

    async def wait(self) -> None:
        """Wait for the task to finish, swallowing its cancellation."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        try:
            response = await self._transport.exchange(self.request, self._report)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                f"Transport failed on {self.request.method} {self.request.url}"
            )
            self._post(
                OperationFinished(self.id, self.tracker_id, Err(NetworkError()))
            )
            return

        self._post(OperationFinished(self.id, self.tracker_id, self._interpret(response)))

    def _report(self, event: Sending | Receiving) -> None:
        if self.cancelled:
            return
        self._post(OperationProgress(self.id, self.tracker_id, event))

    def _interpret(self, response: RawResponse) -> Result[Any]:
        try:
            return self.request.expect(response)
        except Exception as e:
            logger.warning(
                f"Interpreter for {self.request.url} raised {e!r}; reporting bad body"
            )
            if isinstance(response, GoodStatusResponse):
                return Err(
                    BadBody(
                        message=str(e),
                        metadata=response.metadata,
                        body=response.body,
                    )
                )
            # Non-2xx responses never need decoding; classify them as usual.
            return expect_bytes()(response)
