import asyncio

from lockstep.protocol.errors import BadBody, Err, NetworkError, Ok
from lockstep.protocol.events import Receiving, Sending
from lockstep.protocol.expect import expect_json, expect_string
from lockstep.protocol.request import get
from lockstep.runtime.operation import Operation, OperationFinished, OperationProgress


class TestOperation:
    def setup_method(self):
        self.posted: list = []

    async def test_posts_progress_then_outcome(self, mock_transport, yield_loop):
        # Arrange
        operation = Operation(
            mock_transport,
            get("https://e.com/x", expect=expect_string()),
            self.posted.append,
            tracker_id="a",
        ).start()
        await yield_loop()
        scripted = mock_transport.last()

        # Act
        scripted.emit(Sending(sent=0, size=0))
        scripted.emit(Receiving(received=2, size=2))
        scripted.succeed("ok")
        await operation.wait()

        # Assert
        assert self.posted == [
            OperationProgress(operation.id, "a", Sending(sent=0, size=0)),
            OperationProgress(operation.id, "a", Receiving(received=2, size=2)),
            OperationFinished(operation.id, "a", Ok("ok")),
        ]
        assert operation.done

    async def test_cancel_is_idempotent_and_silences_operation(
        self, mock_transport, yield_loop
    ):
        # Arrange
        operation = Operation(
            mock_transport, get("https://e.com/x"), self.posted.append, "a"
        ).start()
        await yield_loop()
        scripted = mock_transport.last()

        # Act
        operation.cancel()
        operation.cancel()
        scripted.emit(Receiving(received=1))
        await operation.wait()

        # Assert
        assert scripted.cancelled
        assert operation.cancelled
        assert self.posted == []

    async def test_cancel_after_completion_is_noop(self, mock_transport, yield_loop):
        # Arrange
        operation = Operation(
            mock_transport, get("https://e.com/x"), self.posted.append, "a"
        ).start()
        await yield_loop()
        mock_transport.last().succeed()
        await operation.wait()

        # Act - should not raise
        operation.cancel()

        # Assert
        assert len(self.posted) == 1
        assert not mock_transport.last().cancelled

    async def test_cancel_before_start_never_runs(self, mock_transport, yield_loop):
        # Arrange
        operation = Operation(mock_transport, get("https://e.com/x"), self.posted.append)

        # Act
        operation.cancel()
        operation.start()
        await yield_loop()

        # Assert
        assert mock_transport.exchanges == []
        assert not operation.done

    async def test_transport_exception_reports_network_error(
        self, mock_transport, yield_loop
    ):
        # Arrange
        mock_transport.simulate_error()

        # Act
        operation = Operation(
            mock_transport, get("https://e.com/x"), self.posted.append, "a"
        ).start()
        await operation.wait()

        # Assert
        assert self.posted == [OperationFinished(operation.id, "a", Err(NetworkError()))]

    async def test_interpreter_rejection_is_bad_body(self, mock_transport, yield_loop):
        # Arrange
        operation = Operation(
            mock_transport,
            get("https://e.com/x", expect=expect_json(int)),
            self.posted.append,
            "a",
        ).start()
        await yield_loop()

        # Act
        mock_transport.last().succeed("not json")
        await operation.wait()

        # Assert
        result = self.posted[-1].result
        assert isinstance(result, Err)
        assert isinstance(result.error, BadBody)

    async def test_interpreter_crash_is_bad_body(self, mock_transport, yield_loop):
        # Arrange
        def explode(text: str) -> str:
            raise KeyError("missing")

        operation = Operation(
            mock_transport,
            get("https://e.com/x", expect=expect_string().map(explode)),
            self.posted.append,
            "a",
        ).start()
        await yield_loop()

        # Act
        mock_transport.last().succeed("ok")
        await operation.wait()

        # Assert
        result = self.posted[-1].result
        assert isinstance(result.error, BadBody)
        assert "missing" in result.error.message

    async def test_done_callback_runs_on_cancel(self, mock_transport, yield_loop):
        # Arrange
        seen = []
        operation = Operation(mock_transport, get("https://e.com/x"), self.posted.append)
        operation.start()
        operation.add_done_callback(seen.append)
        await yield_loop()

        # Act
        operation.cancel()
        await operation.wait()
        await asyncio.sleep(0)

        # Assert
        assert seen == [operation]
