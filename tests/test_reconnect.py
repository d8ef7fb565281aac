"""
Tests for backoff and the reconnection controller.
"""
import pytest

from partysync import Settings
from partysync.reconnect import ReconnectionController, backoff_delay
from partysync.transport import ConnectionState


def noop(*args):
    pass


@pytest.fixture
def controller(scheduler, sessions):
    def factory(generation):
        return sessions(
            "ws://relay.test/ws",
            generation,
            on_open=noop,
            on_message=noop,
            on_close=noop,
            on_error=noop,
        )

    return ReconnectionController(scheduler, factory, "alice", Settings())


class TestBackoffDelay:
    """Delay grows by 1.5x per attempt and is capped."""

    def test_sequence(self):
        assert [backoff_delay(n) for n in range(1, 5)] == [1.0, 1.5, 2.25, 3.375]

    def test_cap(self):
        assert backoff_delay(10) == 30.0
        assert backoff_delay(50) == 30.0

    def test_attempt_is_one_based(self):
        with pytest.raises(ValueError):
            backoff_delay(0)


class TestReconnectionController:
    """Lifecycle of sessions under the controller."""

    def test_start_opens_session_with_identity(self, controller, sessions):
        controller.start()
        assert len(sessions.sessions) == 1
        assert sessions.latest.identity == "alice"
        assert controller.state is ConnectionState.CONNECTING
        assert controller.generation == 1

    def test_consecutive_abnormal_closes_back_off_then_stop(self, controller, sessions, scheduler):
        controller.start()
        delays = []
        for _ in range(9):
            controller.handle_close(1006)
            assert controller.reconnect_pending
            delays.append(controller.last_delay)
            scheduler.advance(controller.last_delay)
        assert delays == [min(1.5 ** k, 30.0) for k in range(9)]
        assert len(sessions.sessions) == 10

        controller.handle_close(1006)
        assert controller.exhausted
        assert not controller.reconnect_pending
        assert scheduler.pending == []
        assert controller.state is ConnectionState.CLOSED
        assert len(sessions.sessions) == 10

    def test_no_reconnect_before_delay_elapses(self, controller, sessions, scheduler):
        controller.start()
        controller.handle_close(1006)
        controller.handle_close(1006)
        # second close replaced the first timer
        assert len(scheduler.pending) == 1
        scheduler.advance(1.4)
        assert len(sessions.sessions) == 1
        scheduler.advance(0.1)
        assert len(sessions.sessions) == 2

    def test_open_resets_attempts(self, controller, scheduler):
        controller.start()
        controller.handle_close(1006)
        scheduler.advance(1.0)
        controller.handle_close(1006)
        assert controller.attempts == 2
        scheduler.advance(1.5)
        controller.handle_open()
        assert controller.attempts == 0
        assert controller.state is ConnectionState.OPEN
        controller.handle_close(1006)
        assert controller.last_delay == 1.0

    def test_normal_closure_does_not_reconnect(self, controller, scheduler):
        controller.start()
        controller.handle_open()
        controller.handle_close(1000)
        assert not controller.reconnect_pending
        assert controller.state is ConnectionState.CLOSED
        assert not controller.exhausted

    def test_connect_retires_previous_session(self, controller, sessions):
        controller.start()
        first = sessions.latest
        controller.connect()
        assert first.neutralized
        assert first.close_calls == [1000]
        assert controller.session is sessions.latest
        assert not controller.is_current(first.generation)

    def test_manual_connect_cancels_pending_timer(self, controller, sessions, scheduler):
        controller.start()
        controller.handle_close(1006)
        controller.connect()
        assert scheduler.pending == []
        assert len(sessions.sessions) == 2

    def test_shutdown_is_idempotent(self, controller, sessions, scheduler):
        controller.start()
        controller.handle_open()
        session = sessions.latest
        generation = controller.generation

        controller.shutdown()
        controller.shutdown()

        assert session.close_calls == [1000]
        assert scheduler.pending == []
        assert controller.session is None
        assert controller.state is ConnectionState.CLOSED
        assert not controller.is_current(generation)

    def test_shutdown_cancels_scheduled_reconnect(self, controller, sessions, scheduler):
        controller.start()
        controller.handle_close(1006)
        controller.shutdown()
        scheduler.advance(60)
        assert len(sessions.sessions) == 1

    def test_start_after_exhaustion_resets_budget(self, controller, sessions, scheduler):
        controller.start()
        for _ in range(10):
            controller.handle_close(1006)
            if controller.reconnect_pending:
                scheduler.advance(controller.last_delay)
        assert controller.exhausted

        controller.start()
        assert not controller.exhausted
        assert controller.attempts == 0
        assert controller.state is ConnectionState.CONNECTING
