import logging
import signal
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """
    Waits for the first of SIGINT/SIGTERM or an internal fatal trigger, then
    runs the teardown steps in order. Teardown runs at most once.
    """

    def __init__(self, steps: list[tuple[str, Callable[[], None]]] | None = None):
        self._steps = list(steps or [])
        self._triggered = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._done = False

    @property
    def reason(self) -> str | None:
        return self._reason

    def add_step(self, name: str, step: Callable[[], None]) -> None:
        self._steps.append((name, step))

    def install_signal_handlers(self) -> None:
        """Must be called from the main thread."""
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self._on_signal)

    def _on_signal(self, signum, frame) -> None:
        self.trigger(signal.Signals(signum).name)

    def trigger(self, reason: str) -> None:
        """
        Wake the coordinator. Only the first reason is kept.

        Runs inside signal handlers, so it must not take `_lock`: the main
        thread may hold it in `teardown()` when the signal arrives.
        """
        if self._reason is None:
            self._reason = reason
        self._triggered.set()

    def wait(self, poll_interval: float = 0.5) -> str:
        # Short waits keep the main thread responsive to signals.
        while not self._triggered.wait(poll_interval):
            pass
        return self._reason

    def run(self) -> str:
        """Block until triggered, then tear down. Returns the trigger reason."""
        reason = self.wait()
        logger.info("Shutting down (%s)", reason)
        self.teardown()
        return reason

    def teardown(self) -> None:
        with self._lock:
            if self._done:
                return
            self._done = True
        for name, step in self._steps:
            logger.info("Stopping %s", name)
            try:
                step()
            except Exception as e:
                logger.error("Error stopping %s: %s", name, e)
