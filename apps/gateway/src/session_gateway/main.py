#!/usr/bin/env python3
import logging
import sys
import time

from session_gateway.config import configure_logging, parse_config
from session_gateway.device_store import DeviceStore
from session_gateway.protocol import ProtocolLoadError, load_client_factory
from session_gateway.server import GatewayServer, build_app
from session_gateway.session import SessionController
from session_gateway.shutdown import ShutdownCoordinator

EXIT_SETTLE_SECONDS = 1.0

logger = logging.getLogger("gateway")


def main(argv: list[str] | None = None) -> int:
    config = parse_config(argv)
    configure_logging(config.log_level)
    logger.info("Starting with %r", config)

    try:
        client_factory = load_client_factory(config.client)
    except ProtocolLoadError as e:
        logger.error("Cannot load protocol client: %s", e)
        return 2

    coordinator = ShutdownCoordinator()
    coordinator.install_signal_handlers()

    # Startup-fatal: any error here propagates and aborts the process
    # before the HTTP server accepts a request.
    store = DeviceStore(config.db_path)
    store.open()

    controller = SessionController(
        store,
        client_factory,
        on_fatal=coordinator.trigger,
        send_timeout=config.send_timeout,
        client_logger=logging.getLogger("client"),
    )
    controller.start()

    app = build_app(controller.snapshot, controller.send, config.key)
    server = GatewayServer(
        app,
        host=config.host,
        port=config.port,
        on_close=coordinator.trigger,
        shutdown_grace=config.shutdown_grace,
    )

    # Disconnect first so no new send starts, then drain HTTP.
    coordinator.add_step("session", controller.shutdown)
    coordinator.add_step("http server", server.stop)

    server.start()
    coordinator.run()

    time.sleep(EXIT_SETTLE_SECONDS)
    return 0


if __name__ == '__main__':
    sys.exit(main())
