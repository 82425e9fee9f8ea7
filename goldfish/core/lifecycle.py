#!/usr/bin/env python3
"""
goldfish Process Lifecycle

ShutdownObserver is installed first thing at startup. A daemon thread blocks
until SIGINT/SIGTERM arrives, then:
  1. closes the dev backend liveness channel, if one was attached
  2. sleeps the grace period so the dev backend can tear down
  3. exits the process

The dev backend does not exist yet when the observer is installed; it is
handed over later with attach().
"""

import logging
import os
import signal
import sys
import threading
import time
from typing import Callable, Iterable, Optional

from .audit import audit_logger

logger = logging.getLogger("goldfish.lifecycle")

DEFAULT_GRACE_PERIOD = 1.0


class LivenessChannel:
    """Closed exactly once to tell the dev backend to shut down."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()

    def close(self) -> bool:
        """Close the channel. Returns False if it was already closed."""
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    @property
    def closed(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


def _exit_process(code: int) -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()
    sys.stdout.flush()
    sys.stderr.flush()
    # sys.exit() from a worker thread only ends that thread
    os._exit(code)


class ShutdownObserver:
    """Relays OS shutdown signals to the dev backend, then exits."""

    def __init__(
        self,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        exit_func: Callable[[int], None] = _exit_process,
        signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
    ):
        self.grace_period = grace_period
        self._exit = exit_func
        self._signals = tuple(signals)
        self._lock = threading.Lock()
        self._liveness: Optional[LivenessChannel] = None
        self._triggered = threading.Event()
        self._signal_name = ""
        self._thread: Optional[threading.Thread] = None

    def install(self) -> "ShutdownObserver":
        """Register signal handlers and start the observer thread. Main thread only."""
        for sig in self._signals:
            signal.signal(sig, self._handle_signal)
        self._thread = threading.Thread(target=self._run, name="goldfish-shutdown", daemon=True)
        self._thread.start()
        return self

    def attach(self, liveness: LivenessChannel) -> None:
        """Hand over the dev backend liveness channel once it exists."""
        with self._lock:
            self._liveness = liveness

    @property
    def triggered(self) -> bool:
        return self._triggered.is_set()

    def trigger(self, signal_name: str) -> None:
        """Start shutdown. Only the first call counts."""
        with self._lock:
            if self._triggered.is_set():
                return
            self._signal_name = signal_name
            self._triggered.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _handle_signal(self, signum, frame) -> None:
        self.trigger(signal.Signals(signum).name)

    def _run(self) -> None:
        self._triggered.wait()
        self.shutdown()

    def shutdown(self) -> None:
        """Close the liveness channel (if any), wait the grace period, exit."""
        with self._lock:
            liveness = self._liveness
            signal_name = self._signal_name or "manual"

        logger.info("==> goldfish shutdown triggered (%s)", signal_name)
        audit_logger.shutdown(signal_name=signal_name, dev_backend=liveness is not None)

        if liveness is not None:
            liveness.close()
        time.sleep(self.grace_period)
        self._exit(0)
