import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from lockstep.protocol.events import Receiving, Sending
from lockstep.protocol.request import RequestDescriptor
from lockstep.protocol.response import (
    Metadata,
    RawResponse,
    status_response,
)
from lockstep.transport.base import ProgressReporter, Transport


@dataclass
class ScriptedExchange:
    """One exchange the test drives by hand."""

    request: RequestDescriptor[Any]
    report: ProgressReporter
    response: asyncio.Future[RawResponse]
    started_at: float
    cancelled: bool = False
    progress: list[Sending | Receiving] = field(default_factory=list)

    @property
    def url(self) -> str:
        return self.request.url

    def emit(self, event: Sending | Receiving) -> None:
        self.progress.append(event)
        self.report(event)

    def succeed(self, body: str = "ok", status_code: int = 200) -> None:
        metadata = Metadata(
            url=self.request.url, status_code=status_code, status_text="OK"
        )
        self.finish(status_response(metadata, body.encode()))

    def finish(self, response: RawResponse) -> None:
        if not self.response.done():
            self.response.set_result(response)


class MockTransport(Transport):
    """Mock transport whose exchanges stay open until the test finishes them."""

    def __init__(self):
        self.exchanges: list[ScriptedExchange] = []
        self.log: list[str] = []
        self._should_raise_error = False

    async def exchange(
        self, request: RequestDescriptor[Any], report: ProgressReporter
    ) -> RawResponse:
        loop = asyncio.get_running_loop()
        scripted = ScriptedExchange(
            request=request,
            report=report,
            response=loop.create_future(),
            started_at=loop.time(),
        )
        self.exchanges.append(scripted)
        self.log.append(f"start:{request.url}")

        if self._should_raise_error:
            raise ConnectionError("Network down")

        try:
            return await scripted.response
        except asyncio.CancelledError:
            scripted.cancelled = True
            self.log.append(f"cancel:{request.url}")
            raise

    def simulate_error(self) -> None:
        """Make every following exchange raise."""
        self._should_raise_error = True

    # Test helpers
    def urls(self) -> list[str]:
        return [scripted.url for scripted in self.exchanges]

    def last(self) -> ScriptedExchange:
        return self.exchanges[-1]


@pytest.fixture
def mock_transport():
    """Fresh MockTransport for testing."""
    return MockTransport()


async def yield_to_event_loop(seconds: float = 0.01) -> None:
    """Let the event loop process pending tasks and callbacks.

    Args:
        seconds: Small delay to ensure async operations settle.
                Defaults to 10ms - enough for most async operations.
    """
    await asyncio.sleep(seconds)


@pytest.fixture
def yield_loop():
    """Helper to yield to event loop in tests."""
    return yield_to_event_loop
