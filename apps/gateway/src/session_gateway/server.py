import asyncio
import logging
import threading
from typing import Callable

from aiohttp import web

from session_gateway import secure
from session_gateway.protocol import Address, AddressError, SendResult, parse_address
from session_gateway.qr import render_png
from session_gateway.session import NotReadyError
from session_gateway.state import SessionState

DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 8080
DEFAULT_SHUTDOWN_GRACE = 5.0

SNAPSHOT_KEY = web.AppKey("snapshot", Callable[[], SessionState])
SENDER_KEY = web.AppKey("sender", Callable[[Address, str], SendResult])
CREDENTIAL_KEY = web.AppKey("credential", str)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _authorized(request: web.Request, key: str) -> bool:
    return secure.compare(key, request.app[CREDENTIAL_KEY])


def _form_value(form, name: str) -> str:
    # Multipart uploads come back as FileField; treat them as missing.
    value = form.get(name, "")
    return value if isinstance(value, str) else ""


def _forbidden() -> web.Response:
    # Deliberately generic: never say why.
    return web.Response(status=403, text="403 Forbidden")


async def handle_ready(request):
    """
    GET /ready
    200 "OK" once the session is paired, 503 "not ready" otherwise.
    """
    if request.app[SNAPSHOT_KEY]().ready:
        return web.Response(status=200, text="OK")
    return web.Response(status=503, text="not ready")


async def handle_qr(request):
    """
    GET /qr?key=...
    Returns the pending pairing code as a 256x256 PNG QR image.
    """
    if not _authorized(request, request.query.get("key", "")):
        return _forbidden()

    state = request.app[SNAPSHOT_KEY]()
    if state.ready:
        return web.Response(status=400, text="already logged in")
    if not state.pending_code:
        return web.Response(status=503, text="no QR code available")

    try:
        png = render_png(state.pending_code)
    except Exception as e:
        logger.error("Failed to render QR code: %s", e)
        return web.Response(status=500, text=str(e))

    return web.Response(status=200, body=png, content_type="image/png")


async def handle_send(request):
    """
    POST /send   (form fields: key, to, text)
    Sends a text message through the session. Blocks until the message is
    acknowledged or the protocol timeout elapses.
    """
    if not request.app[SNAPSHOT_KEY]().ready:
        return web.Response(status=503, text="not ready")

    form = await request.post()
    if not _authorized(request, _form_value(form, "key")):
        return _forbidden()

    to = _form_value(form, "to")
    if not to:
        return web.Response(status=400, text="to is required")
    try:
        address = parse_address(to)
    except AddressError as e:
        return web.Response(status=400, text=str(e))

    text = _form_value(form, "text")
    if not text:
        return web.Response(status=400, text="text is required")

    # Blocking send runs on a worker thread so the event loop keeps serving.
    try:
        result = await asyncio.to_thread(request.app[SENDER_KEY], address, text)
    except NotReadyError:
        return web.Response(status=503, text="not ready")
    except Exception as e:
        logger.warning("Send to %s failed: %s", address, e)
        return web.Response(status=500, text=str(e))

    logger.info("Sent message %s to %s", result.message_id, address)
    return web.Response(status=200, text="OK")


# ---------------------------------------------------------------------------
# App factory + server runner
# ---------------------------------------------------------------------------

def build_app(
    snapshot: Callable[[], SessionState],
    sender: Callable[[Address, str], SendResult],
    credential: str,
) -> web.Application:
    app = web.Application()
    app[SNAPSHOT_KEY] = snapshot
    app[SENDER_KEY] = sender
    app[CREDENTIAL_KEY] = credential
    app.router.add_get("/ready", handle_ready)
    app.router.add_get("/qr", handle_qr)
    app.router.add_post("/send", handle_send)
    return app


class GatewayServer:
    """
    Runs the aiohttp app in its own asyncio event loop inside a daemon
    thread. Using a dedicated loop keeps the main thread free to wait for
    shutdown.

    If the server exits without `stop()` having been called (for example
    the address is already in use), `on_close` is called with the reason.
    """

    def __init__(
        self,
        app: web.Application,
        host: str = DEFAULT_HTTP_HOST,
        port: int = DEFAULT_HTTP_PORT,
        on_close: Callable[[str], None] | None = None,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE,
    ):
        self.app = app
        self.host = host
        self.port = port
        self.shutdown_grace = shutdown_grace
        self._on_close = on_close
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None
        self._started = threading.Event()
        self._stopping = False
        self._thread: threading.Thread | None = None

    async def _run(self) -> None:
        self._stop_event = asyncio.Event()
        runner = web.AppRunner(self.app, shutdown_timeout=self.shutdown_grace)
        await runner.setup()
        try:
            site = web.TCPSite(runner, self.host, self.port)
            await site.start()
            self.port = runner.addresses[0][1]
            logger.info("HTTP server listening on http://%s:%s", self.host, self.port)
            self._started.set()
            await self._stop_event.wait()
        finally:
            await runner.cleanup()

    def _serve(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        reason = "HTTP server stopped"
        try:
            loop.run_until_complete(self._run())
        except Exception as e:
            logger.error("Error starting HTTP server: %s", e)
            reason = f"HTTP server failed: {e}"
        finally:
            loop.close()
            self._started.set()
        if not self._stopping and self._on_close is not None:
            self._on_close(reason)

    def start(self) -> threading.Thread:
        """Start the server thread and wait until it is listening (or has failed)."""
        self._thread = threading.Thread(target=self._serve, daemon=True, name="http-server")
        self._thread.start()
        self._started.wait()
        return self._thread

    def stop(self) -> None:
        """Stop accepting requests, give in-flight ones the grace period, then return."""
        self._stopping = True
        loop, stop_event = self._loop, self._stop_event
        if loop is not None and stop_event is not None:
            try:
                loop.call_soon_threadsafe(stop_event.set)
            except RuntimeError:
                pass  # loop already closed
        if self._thread is not None:
            self._thread.join(self.shutdown_grace + 1.0)
        logger.info("HTTP server stopped")
