import logging
import sqlite3
import threading
from contextlib import closing
from dataclasses import dataclass

DEFAULT_DB_PATH = "messages.db"

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS device (
    slot     INTEGER PRIMARY KEY CHECK (slot = 1),
    address  TEXT,
    identity BLOB NOT NULL
)
"""


class DeviceStoreError(Exception):
    pass


@dataclass(frozen=True)
class Device:
    """
    Persisted device identity. `address` is None until the device has been
    paired; `identity` is opaque to this process.
    """
    address: str | None = None
    identity: bytes = b""

    @property
    def paired(self) -> bool:
        return self.address is not None


class DeviceStore:
    """Single-device SQLite store. Only one session per process is supported."""

    def __init__(self, path: str = DEFAULT_DB_PATH):
        self.path = path
        self._lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=5.0)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def open(self) -> None:
        try:
            with self._lock, closing(self._connect()) as conn, conn:
                conn.execute(_SCHEMA)
        except sqlite3.Error as e:
            raise DeviceStoreError(f"cannot open device store at {self.path}: {e}") from e
        logger.info("Device store ready at %s", self.path)

    def load(self) -> Device:
        try:
            with self._lock, closing(self._connect()) as conn:
                row = conn.execute("SELECT address, identity FROM device WHERE slot = 1").fetchone()
        except sqlite3.Error as e:
            raise DeviceStoreError(f"cannot load device: {e}") from e
        if row is None:
            return Device()
        return Device(address=row[0], identity=bytes(row[1]))

    def save(self, device: Device) -> None:
        try:
            with self._lock, closing(self._connect()) as conn, conn:
                conn.execute(
                    "INSERT OR REPLACE INTO device (slot, address, identity) VALUES (1, ?, ?)",
                    (device.address, device.identity),
                )
        except sqlite3.Error as e:
            raise DeviceStoreError(f"cannot save device: {e}") from e
        logger.info("Saved device identity for %s", device.address)

    def delete(self) -> None:
        try:
            with self._lock, closing(self._connect()) as conn, conn:
                conn.execute("DELETE FROM device WHERE slot = 1")
        except sqlite3.Error as e:
            raise DeviceStoreError(f"cannot delete device: {e}") from e
        logger.info("Deleted stored device identity")
