import importlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol

# ---------------------------------------------------------------------------
# Protocol events
#
# The messaging client delivers these one at a time, in order, on its own
# thread. The set is closed: anything else is a programming error.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CodeEvent:
    """A fresh batch of pairing codes. The first one is shown to the user."""
    codes: tuple


@dataclass(frozen=True)
class PairSuccessEvent:
    address: str
    identity: bytes = b""


@dataclass(frozen=True)
class LoggedOutEvent:
    reason: str = ""


@dataclass(frozen=True)
class StreamFaultEvent:
    """The connection hit an error it cannot recover from."""
    code: str = ""


@dataclass(frozen=True)
class OtherEvent:
    payload: Any = None


Event = CodeEvent | PairSuccessEvent | LoggedOutEvent | StreamFaultEvent | OtherEvent


# ---------------------------------------------------------------------------
# Session addresses
# ---------------------------------------------------------------------------

KNOWN_SERVERS = frozenset({
    "s.whatsapp.net",
    "c.us",
    "g.us",
    "broadcast",
    "lid",
    "newsletter",
    "hosted",
    "hosted.lid",
    "bot",
})


class AddressError(ValueError):
    pass


@dataclass(frozen=True)
class Address:
    user: str
    server: str
    agent: int = 0
    device: int = 0

    def __str__(self) -> str:
        user = self.user
        if self.agent:
            user = f"{user}.{self.agent}"
        if self.device:
            user = f"{user}:{self.device}"
        return f"{user}@{self.server}"


def parse_address(raw: str) -> Address:
    """
    Parse `user[.agent][:device]@server`.

    Raises AddressError with a message suitable for returning to the caller.
    """
    user, sep, server = raw.partition("@")
    if not sep:
        raise AddressError(f"invalid address {raw!r}: missing '@server' part")
    if server not in KNOWN_SERVERS:
        raise AddressError(f"invalid address {raw!r}: unknown server {server!r}")

    user, _, device_part = user.partition(":")
    user, _, agent_part = user.partition(".")
    if not user:
        raise AddressError(f"invalid address {raw!r}: empty user")

    try:
        agent = int(agent_part) if agent_part else 0
        device = int(device_part) if device_part else 0
    except ValueError:
        raise AddressError(f"invalid address {raw!r}: agent and device must be numeric") from None

    return Address(user=user, server=server, agent=agent, device=device)


# ---------------------------------------------------------------------------
# Client interface
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SendResult:
    message_id: str
    timestamp: datetime = field(default_factory=datetime.now)


class ProtocolClient(Protocol):
    def add_event_handler(self, handler: Callable[[Event], None]) -> None: ...

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def send_message(self, address: Address, text: str, timeout: float) -> SendResult: ...


ClientFactory = Callable[[Any, logging.Logger], ProtocolClient]


class ProtocolLoadError(Exception):
    pass


def load_client_factory(path: str) -> ClientFactory:
    """Resolve a `module:attribute` import path to a client factory."""
    module_path, sep, attr = path.partition(":")
    if not sep or not module_path or not attr:
        raise ProtocolLoadError(f"client factory must look like 'module:attribute', got {path!r}")
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ProtocolLoadError(f"cannot import {module_path}: {e}") from e
    factory: ClientFactory | None = getattr(module, attr, None)
    if not callable(factory):
        raise ProtocolLoadError(f"{path} is not a callable client factory")
    return factory
