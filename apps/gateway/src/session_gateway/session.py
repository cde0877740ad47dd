import functools
import logging
import threading
from enum import Enum
from typing import Callable

from session_gateway.device_store import Device, DeviceStore, DeviceStoreError
from session_gateway.protocol import (
    Address,
    ClientFactory,
    CodeEvent,
    Event,
    LoggedOutEvent,
    OtherEvent,
    PairSuccessEvent,
    ProtocolClient,
    SendResult,
    StreamFaultEvent,
)
from session_gateway.state import SessionState, SessionStateStore

RECONNECT_DELAY_SECONDS = 5.0
DEFAULT_SEND_TIMEOUT = 30.0

logger = logging.getLogger(__name__)


class SessionPhase(Enum):
    INIT = "init"
    AWAITING_CODE = "awaiting_code"
    READY = "ready"
    LOGGED_OUT = "logged_out"
    TERMINATED = "terminated"


class NotReadyError(Exception):
    pass


class SessionController:
    """
    Drives the messaging session through pairing, ready, logged-out and
    reconnect, and publishes the result to its SessionStateStore.

    Protocol events are handled on the client's delivery thread, one at a
    time. The reconnect after a logout runs on a timer owned by this
    controller and is cancelled by `shutdown()`. Events coming from a
    client that has since been replaced are dropped.

    Fatal conditions (stream fault, failed reconnect) are reported once
    through `on_fatal`; the controller never tears the process down itself.
    """

    def __init__(
        self,
        store: DeviceStore,
        client_factory: ClientFactory,
        on_fatal: Callable[[str], None] | None = None,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
        client_logger: logging.Logger | None = None,
    ):
        self._store = store
        self._client_factory = client_factory
        self._on_fatal = on_fatal
        self._reconnect_delay = reconnect_delay
        self._send_timeout = send_timeout
        self._client_logger = client_logger or logging.getLogger("client")

        self._state = SessionStateStore()
        self._lock = threading.Lock()
        self._phase = SessionPhase.INIT
        self._client: ProtocolClient | None = None
        self._reconnect_timer: threading.Timer | None = None
        self._closed = False
        self._fatal_raised = False

    # -----------------------------------------------------------------------
    # Read-only accessors
    # -----------------------------------------------------------------------

    def snapshot(self) -> SessionState:
        return self._state.snapshot()

    @property
    def phase(self) -> SessionPhase:
        with self._lock:
            return self._phase

    # -----------------------------------------------------------------------
    # Startup / reconnect
    # -----------------------------------------------------------------------

    def start(self) -> None:
        """
        Load the stored device and connect. Errors propagate: a failure here
        happens before the HTTP server is up and is not recoverable.
        """
        device = self._store.load()
        if device.paired:
            logger.info("Found stored device %s, skipping pairing", device.address)
        else:
            logger.info("No stored device, waiting for a pairing code")
        self._open_session(device)

    def _open_session(self, device: Device) -> None:
        client = self._client_factory(device, self._client_logger)
        with self._lock:
            if self._closed:
                return
            self._client = client
            # A stored identity starts ready, so a logout during connect
            # goes through the normal logout path.
            if device.paired:
                self._state.mark_ready()
                self._set_phase(SessionPhase.READY)
        client.add_event_handler(functools.partial(self._on_event, client))
        client.connect()

        with self._lock:
            orphaned = self._closed or self._client is not client
        if orphaned:
            logger.info("Session closed while connecting, disconnecting")
            client.disconnect()

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if self._closed or self._phase is not SessionPhase.LOGGED_OUT:
                return
            timer = threading.Timer(self._reconnect_delay, lambda: self._reconnect(timer))
            timer.name = "session-reconnect"
            timer.daemon = True
            self._reconnect_timer = timer
            timer.start()
        logger.info("Reconnecting in %.1fs", self._reconnect_delay)

    def _reconnect(self, timer: threading.Timer) -> None:
        with self._lock:
            if self._closed or self._reconnect_timer is not timer:
                return
            self._reconnect_timer = None
            stale, self._client = self._client, None
            self._set_phase(SessionPhase.AWAITING_CODE)

        if stale is not None:
            try:
                stale.disconnect()
            except Exception as e:
                logger.warning("Error disconnecting logged-out client: %s", e)

        try:
            self._open_session(self._store.load())
        except Exception as e:
            logger.error("Error reconnecting: %s", e)
            self._escalate(f"reconnect failed: {e}")
            return
        logger.info("Reconnected")

    # -----------------------------------------------------------------------
    # Event handling
    # -----------------------------------------------------------------------

    def _on_event(self, source: ProtocolClient | None, event: Event) -> None:
        # Store I/O and fatal escalation run after the lock is released.
        follow_up: Callable[[], None] | None = None
        with self._lock:
            if source is not self._client:
                logger.debug("Dropping %s from a replaced client", type(event).__name__)
                return
            if self._phase is SessionPhase.TERMINATED:
                return

            match event:
                case CodeEvent():
                    self._on_code(event)
                case PairSuccessEvent():
                    follow_up = self._on_pair_success(event)
                case LoggedOutEvent():
                    follow_up = self._on_logged_out(event)
                case StreamFaultEvent(code=code):
                    follow_up = functools.partial(self._escalate, f"stream error {code}".strip())
                case OtherEvent():
                    logger.debug("Ignoring protocol event %r", event.payload)
                case _:
                    raise TypeError(f"unknown protocol event {event!r}")

        if follow_up is not None:
            follow_up()

    def _on_code(self, event: CodeEvent) -> None:
        if self._phase not in (SessionPhase.INIT, SessionPhase.AWAITING_CODE):
            logger.warning("Pairing code received while %s, ignoring", self._phase.value)
            return
        if not event.codes:
            logger.warning("Empty pairing code event, ignoring")
            return
        self._state.set_pending_code(event.codes[0])
        self._set_phase(SessionPhase.AWAITING_CODE)

    def _on_pair_success(self, event: PairSuccessEvent) -> Callable[[], None]:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        self._state.mark_ready()
        self._set_phase(SessionPhase.READY)
        return functools.partial(self._save_device, Device(address=event.address, identity=event.identity))

    def _on_logged_out(self, event: LoggedOutEvent) -> Callable[[], None] | None:
        if self._phase is not SessionPhase.READY:
            logger.warning("Logged out while %s, ignoring", self._phase.value)
            return None
        self._state.mark_logged_out()
        self._set_phase(SessionPhase.LOGGED_OUT)
        logger.warning("Session logged out (%s)", event.reason or "no reason given")
        return self._forget_device

    def _save_device(self, device: Device) -> None:
        try:
            self._store.save(device)
        except DeviceStoreError as e:
            logger.error("Paired as %s but could not persist the device: %s", device.address, e)

    def _forget_device(self) -> None:
        # The reconnect loads the device, so it is only scheduled once the
        # old identity is gone.
        try:
            self._store.delete()
        except DeviceStoreError as e:
            logger.error("Could not clear the stored device: %s", e)
        self._schedule_reconnect()

    def _set_phase(self, phase: SessionPhase) -> None:
        # Caller holds self._lock.
        if phase is not self._phase:
            logger.info("Session %s -> %s", self._phase.value, phase.value)
            self._phase = phase

    def _escalate(self, reason: str) -> None:
        with self._lock:
            if self._fatal_raised or self._closed:
                return
            self._fatal_raised = True
            self._set_phase(SessionPhase.TERMINATED)
            timer, self._reconnect_timer = self._reconnect_timer, None
        if timer is not None:
            timer.cancel()
        self._state.mark_logged_out()
        logger.error("Fatal session error: %s", reason)
        if self._on_fatal is not None:
            self._on_fatal(reason)

    # -----------------------------------------------------------------------
    # Send / shutdown
    # -----------------------------------------------------------------------

    def send(self, address: Address, text: str) -> SendResult:
        """
        Send `text` to `address` and block until the protocol layer
        acknowledges it or its timeout elapses. Raises NotReadyError without
        touching the client unless the session is ready. Client errors are
        passed through unchanged.
        """
        with self._lock:
            if self._phase is not SessionPhase.READY or self._client is None:
                raise NotReadyError("not ready")
            client = self._client
        return client.send_message(address, text, timeout=self._send_timeout)

    def shutdown(self) -> None:
        """Cancel a pending reconnect and disconnect. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            timer, self._reconnect_timer = self._reconnect_timer, None
            client, self._client = self._client, None
            self._set_phase(SessionPhase.TERMINATED)
        if timer is not None:
            timer.cancel()
        self._state.mark_logged_out()
        if client is not None:
            client.disconnect()
        logger.info("Session closed")
