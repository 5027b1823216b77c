"""Development server with live reload.

Serves the output directory over HTTP and keeps a websocket channel open to
every browser tab showing it. reload() pushes a refresh instruction down
that channel; delivery is best effort.

- Injects the reload client into HTML responses.
- Serves `about.html` for `/about` the way the site generator's own server
  resolves extensionless permalinks.
- Rejects directory listings and missing paths with a 404 (serving 404.html
  when present).

Key classes:
- DevServer: Runs the HTTP and websocket servers in background threads.
- _ReloadHandler: HTTP request handler that injects the reload client.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import threading
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets

logger = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 4000

RELOAD_CLIENT = """
<script>
(function () {{
  var socket = new WebSocket('ws://' + location.hostname + ':{ws_port}');
  socket.onmessage = function (event) {{
    var data = JSON.parse(event.data || '{{}}');
    if (data.type === 'reload') {{
      location.reload();
    }}
  }};
}})();
</script>
"""


def inject_reload_client(html: str, script: str) -> str:
    """Insert ``script`` before the last closing body tag, or append it."""
    index = html.lower().rfind("</body>")
    if index == -1:
        return html + script
    return html[:index] + script + html[index:]


class _ReloadHandler(SimpleHTTPRequestHandler):
    """Serves the output directory, adding the reload client to pages."""

    reload_script = RELOAD_CLIENT.format(ws_port=DEFAULT_HTTP_PORT + 1)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def _send_page(self, page: Path, status: int) -> None:
        body = inject_reload_client(
            page.read_text(encoding="utf-8"), self.reload_script
        ).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _serve_404(self):
        """Answer 404, with the site's own 404.html when it has one."""
        page = Path(self.directory) / "404.html"
        if page.is_file():
            self._send_page(page, 404)
        else:
            self.send_error(404, "File not found")
        return None

    def _resolve(self) -> Path | None:
        """Map the request path to a file: index.html for directories and
        ``name.html`` for extensionless permalinks."""
        target = Path(self.translate_path(self.path))
        if target.is_dir():
            target = target / "index.html"
        elif not target.exists() and not target.suffix:
            target = target.with_name(target.name + ".html")
        return target if target.is_file() else None

    def send_head(self):
        target = self._resolve()
        if target is None:
            return self._serve_404()
        if target.suffix == ".html":
            self._send_page(target, 200)
            return None
        return super().send_head()


class DevServer:
    """Static file server plus live reload channel.

    Attributes:
        root_dir: Directory served over HTTP.
        http_port: Port for the HTTP server.
        ws_port: Port for websocket connections.
        _ws_clients: Connected websocket clients.
        _loop: Event loop owned by the websocket thread, created by start().
    """

    def __init__(
        self,
        root_dir: Path,
        http_port: int | None = None,
        ws_port: int | None = None,
    ):
        self.root_dir = root_dir
        self.http_port = int(http_port or DEFAULT_HTTP_PORT)
        self.ws_port = int(ws_port) if ws_port is not None else self.http_port + 1
        self._reload_script = RELOAD_CLIENT.format(ws_port=self.ws_port)
        self._ws_clients: set = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._httpd: ThreadingHTTPServer | None = None
        self._started = False

    @property
    def url(self) -> str:
        return f"http://localhost:{self.http_port}"

    def start(self) -> None:  # pragma: no cover - integration path
        """Start both servers in daemon threads and return immediately."""
        if self._started:
            return
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self._loop = asyncio.new_event_loop()
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()
        self._started = True

    def stop(self) -> None:
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd = None
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._loop.stop)
        self._started = False

    def reload(self, path: Path | str | None = None) -> None:
        """Ask every connected browser to refresh.

        Args:
            path: Changed file that prompted the reload, for logging.
        """
        if path is not None:
            logger.info("Reloading browsers (%s changed)", path)
        if self._loop is None or not self._loop.is_running():
            logger.debug("Live reload channel not running; nothing to notify")
            return
        self._broadcast_reload()

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.root_dir))
        self._httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info("Serving %s at %s", self.root_dir, self.url)
        self._httpd.serve_forever()

    def _start_ws(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            logger.error(
                "Live reload server failed to start (port %s): %s", self.ws_port, exc
            )
            return
        except RuntimeError:
            # stop() halted the loop
            return
        finally:
            self._loop.close()

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast_reload(self):
        message = json.dumps({"type": "reload"})
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except Exception:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)
