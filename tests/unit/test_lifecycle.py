"""Unit tests for process lifecycle: liveness channel and shutdown observer"""
import signal
import threading
from unittest.mock import MagicMock

import pytest

from goldfish.core.lifecycle import LivenessChannel, ShutdownObserver


class TestLivenessChannel:

    def test_close_once(self):
        channel = LivenessChannel()
        assert channel.closed is False
        assert channel.close() is True
        assert channel.close() is False
        assert channel.closed is True

    def test_wait_returns_after_close(self):
        channel = LivenessChannel()
        threading.Timer(0.05, channel.close).start()
        assert channel.wait(timeout=2) is True

    def test_wait_times_out(self):
        assert LivenessChannel().wait(timeout=0.01) is False


class TestShutdown:
    """Shutdown sequence with an injected exit function"""

    def test_shutdown_without_backend(self):
        exit_func = MagicMock()
        observer = ShutdownObserver(grace_period=0, exit_func=exit_func)

        observer.shutdown()

        exit_func.assert_called_once_with(0)

    def test_shutdown_closes_attached_channel(self):
        exit_func = MagicMock()
        channel = LivenessChannel()
        observer = ShutdownObserver(grace_period=0, exit_func=exit_func)
        observer.attach(channel)

        observer.shutdown()

        assert channel.closed is True
        exit_func.assert_called_once_with(0)

    def test_channel_closed_before_exit(self):
        channel = LivenessChannel()
        seen = []
        observer = ShutdownObserver(grace_period=0, exit_func=lambda code: seen.append(channel.closed))
        observer.attach(channel)

        observer.shutdown()

        assert seen == [True]

    def test_trigger_is_idempotent(self):
        observer = ShutdownObserver(grace_period=0, exit_func=MagicMock())
        observer.trigger("SIGINT")
        observer.trigger("SIGTERM")

        assert observer.triggered is True
        assert observer._signal_name == "SIGINT"

    def test_shutdown_logs_signal(self, caplog):
        observer = ShutdownObserver(grace_period=0, exit_func=MagicMock())
        observer.trigger("SIGTERM")

        with caplog.at_level("INFO"):
            observer.shutdown()

        assert "shutdown triggered (SIGTERM)" in caplog.text


@pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="needs SIGUSR1")
class TestSignalDelivery:
    """Real signal delivery through installed handlers"""

    def test_signal_runs_shutdown_once(self):
        previous = signal.getsignal(signal.SIGUSR1)
        exited = threading.Event()
        exit_func = MagicMock(side_effect=lambda code: exited.set())
        channel = LivenessChannel()
        observer = ShutdownObserver(grace_period=0, exit_func=exit_func, signals=(signal.SIGUSR1,))
        try:
            observer.install()
            observer.attach(channel)

            signal.raise_signal(signal.SIGUSR1)
            signal.raise_signal(signal.SIGUSR1)

            assert exited.wait(timeout=5)
            observer.join(timeout=5)
        finally:
            signal.signal(signal.SIGUSR1, previous)

        assert channel.closed is True
        exit_func.assert_called_once_with(0)
        assert observer._signal_name == "SIGUSR1"
