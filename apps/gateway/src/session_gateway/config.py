import argparse
import logging
import os
from dataclasses import dataclass

from session_gateway.device_store import DEFAULT_DB_PATH
from session_gateway.server import DEFAULT_HTTP_HOST, DEFAULT_HTTP_PORT, DEFAULT_SHUTDOWN_GRACE
from session_gateway.session import DEFAULT_SEND_TIMEOUT

DEFAULT_HTTP_ADDRESS = f":{DEFAULT_HTTP_PORT}"
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class Config:
    host: str
    port: int
    key: str
    db_path: str
    client: str
    send_timeout: float
    shutdown_grace: float
    log_level: str

    def __repr__(self) -> str:
        return (
            f"Config(host={self.host!r}, port={self.port}, key='***', db_path={self.db_path!r}, "
            f"client={self.client!r}, send_timeout={self.send_timeout}, "
            f"shutdown_grace={self.shutdown_grace}, log_level={self.log_level!r})"
        )


def parse_listen_address(value: str) -> tuple[str, int]:
    """Parse a `host:port` listen address. An empty host means all interfaces."""
    host, sep, port = value.rpartition(":")
    if not sep:
        raise ValueError(f"listen address must look like 'host:port', got {value!r}")
    host = host.strip("[]") or DEFAULT_HTTP_HOST
    try:
        port_num = int(port)
    except ValueError:
        raise ValueError(f"invalid port in listen address {value!r}") from None
    if not 0 <= port_num <= 65535:
        raise ValueError(f"port out of range in listen address {value!r}")
    return host, port_num


def build_parser() -> argparse.ArgumentParser:
    env = os.environ
    parser = argparse.ArgumentParser(description="HTTP gateway for a paired messaging session")
    parser.add_argument('--http', type=str, default=env.get("GATEWAY_HTTP", DEFAULT_HTTP_ADDRESS),
                        help='HTTP server listen address (default: :8080)')
    parser.add_argument('--key', type=str, default=env.get("GATEWAY_KEY", ""),
                        help='HTTP server key, required by /qr and /send')
    parser.add_argument('--db', type=str, default=env.get("GATEWAY_DB", DEFAULT_DB_PATH),
                        help='Device store database path (default: messages.db)')
    parser.add_argument('--client', type=str, default=env.get("GATEWAY_CLIENT", ""),
                        help="Protocol client factory as 'module:attribute'")
    parser.add_argument('--send-timeout', type=float, default=DEFAULT_SEND_TIMEOUT,
                        help='Seconds to wait for a send to be acknowledged (default: 30)')
    parser.add_argument('--shutdown-grace', type=float, default=DEFAULT_SHUTDOWN_GRACE,
                        help='Seconds in-flight requests get on shutdown (default: 5)')
    parser.add_argument('--log-level', type=str, default=env.get("GATEWAY_LOG_LEVEL", DEFAULT_LOG_LEVEL),
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help='Logging level (default: INFO)')
    return parser


def parse_config(argv: list[str] | None = None) -> Config:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.key:
        parser.error("a server key is required (--key or GATEWAY_KEY)")
    if not args.client:
        parser.error("a protocol client factory is required (--client or GATEWAY_CLIENT)")
    try:
        host, port = parse_listen_address(args.http)
    except ValueError as e:
        parser.error(str(e))
    if args.send_timeout <= 0:
        parser.error("--send-timeout must be positive")
    if args.shutdown_grace < 0:
        parser.error("--shutdown-grace must not be negative")

    return Config(
        host=host,
        port=port,
        key=args.key,
        db_path=args.db,
        client=args.client,
        send_timeout=args.send_timeout,
        shutdown_grace=args.shutdown_grace,
        log_level=args.log_level,
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
    )
