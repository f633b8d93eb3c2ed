from abc import ABC, abstractmethod
from collections.abc import Callable
from types import TracebackType
from typing import Any, Self

from lockstep.protocol.events import Receiving, Sending
from lockstep.protocol.request import RequestDescriptor
from lockstep.protocol.response import RawResponse

ProgressReporter = Callable[[Sending | Receiving], None]


class Transport(ABC):
    """Abstract transport that performs one HTTP exchange at a time per call.

    Handles the mechanics of putting a request on the wire and reading the
    answer, without knowledge of trackers, reconciliation or rate limiting.

    Transports are driven by the engine:
    - ``exchange()`` runs inside its own asyncio task
    - progress is pushed through the ``report`` callback, in order
    - cancellation is task cancellation; a transport must let
      ``asyncio.CancelledError`` propagate and release its resources

    Failures are reported as raw response values, never raised.
    """

    @abstractmethod
    async def exchange(
        self, request: RequestDescriptor[Any], report: ProgressReporter
    ) -> RawResponse:
        """Perform one exchange and return its raw response.

        Args:
            request: The descriptor to send
            report: Called with each Sending/Receiving event as it happens.
                Sent and received counts must never decrease.

        Returns:
            RawResponse: BadUrl, Timeout, NetworkError, BadStatus or
                GoodStatus.
        """

    async def close(self) -> None:
        """Release any pooled connections. Safe to call multiple times."""

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
        return None
