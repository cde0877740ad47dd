import threading
from contextlib import contextmanager
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Shared session state
#
# Written by the session controller (protocol client thread, reconnect
# timer) and read by HTTP handlers (aiohttp daemon thread). Writers take
# the lock exclusively, readers share it, so a snapshot never mixes the
# halves of two writes.
# ---------------------------------------------------------------------------


class ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class SessionState:
    ready: bool = False
    pending_code: str | None = None


class SessionStateStore:
    """
    Holder of the published session state.

    Invariant: `pending_code` is only ever set while `ready` is False.
    """

    def __init__(self):
        self._lock = ReadWriteLock()
        self._ready = False
        self._pending_code: str | None = None

    def set_pending_code(self, code: str) -> None:
        with self._lock.write_locked():
            self._ready = False
            self._pending_code = code or None

    def mark_ready(self) -> None:
        with self._lock.write_locked():
            self._ready = True
            self._pending_code = None

    def mark_logged_out(self) -> None:
        with self._lock.write_locked():
            self._ready = False
            self._pending_code = None

    def snapshot(self) -> SessionState:
        with self._lock.read_locked():
            return SessionState(ready=self._ready, pending_code=self._pending_code)
