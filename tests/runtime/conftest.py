import pytest

from lockstep.config import EngineSettings
from lockstep.runtime.engine import RequestEngine


class EventRecorder:
    """Subscriber handler that keeps every message it receives."""

    def __init__(self):
        self.messages: list = []

    def __call__(self, message) -> None:
        self.messages.append(message)

    def kinds(self) -> list[str]:
        return [message.kind for message in self.messages]


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
async def engine(mock_transport):
    """Running RequestEngine over the mock transport, stopped afterwards."""
    engine = RequestEngine(mock_transport)
    await engine.start()
    yield engine
    if engine.running:
        await engine.stop()


@pytest.fixture
async def limited_engine(mock_transport):
    """Running RequestEngine with a 100ms cooldown on every tracker."""
    engine = RequestEngine(mock_transport, EngineSettings(cooldown=0.1))
    await engine.start()
    yield engine
    if engine.running:
        await engine.stop()
