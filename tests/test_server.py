import asyncio
import io
import logging
from pathlib import Path

from sitepipe.server import DevServer, _ReloadHandler, inject_reload_client


def make_handler(tmp_path: Path, path: str, codes: list) -> _ReloadHandler:
    handler = _ReloadHandler.__new__(_ReloadHandler)
    handler.path = path
    handler.directory = str(tmp_path)
    handler.command = "GET"
    handler.request_version = "HTTP/1.1"
    handler.server_version = ""
    handler.sys_version = ""
    handler._headers_buffer = []
    handler.headers = {}
    handler.rfile = io.BytesIO(b"")
    handler.wfile = io.BytesIO()
    handler.send_response = lambda code, message=None: codes.append(code)
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None
    handler.send_error = lambda code, message=None: codes.append(("error", code))
    return handler


def test_async_broadcast_drops_stale_clients():
    server = DevServer(Path("."))

    class GoodWS:
        def __init__(self):
            self.messages = []

        async def send(self, msg):
            self.messages.append(msg)

    class BadWS:
        async def send(self, msg):
            raise ConnectionError("gone")

    good = GoodWS()
    bad = BadWS()
    server._ws_clients = {good, bad}
    asyncio.run(server._async_broadcast('{"type": "reload"}'))
    assert good.messages == ['{"type": "reload"}']
    assert bad not in server._ws_clients
    assert good in server._ws_clients


def test_dev_server_ports(tmp_path):
    server = DevServer(tmp_path, http_port=5055, ws_port=None)
    assert server.http_port == 5055
    assert server.ws_port == 5056
    assert server.url == "http://localhost:5055"

    explicit = DevServer(tmp_path, http_port=5055, ws_port=6000)
    assert explicit.ws_port == 6000
    assert f":{explicit.ws_port}" in explicit._reload_script

    default = DevServer(tmp_path)
    assert (default.http_port, default.ws_port) == (4000, 4001)


def test_reload_without_running_channel_is_a_no_op(monkeypatch, tmp_path, caplog):
    server = DevServer(tmp_path)
    called = []
    monkeypatch.setattr(server, "_broadcast_reload", lambda: called.append(True))
    with caplog.at_level(logging.INFO, logger="sitepipe.server"):
        server.reload(tmp_path / "assets" / "css" / "main.css")
    assert "main.css changed" in caplog.text
    assert called == []


class RunningLoop:
    def is_running(self):
        return True


def test_reload_broadcasts_when_channel_runs(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    called = []
    server._loop = RunningLoop()
    monkeypatch.setattr(server, "_broadcast_reload", lambda: called.append(True))
    server.reload()
    assert called == [True]


def test_ws_start_failure_is_logged(monkeypatch, tmp_path, caplog):
    server = DevServer(tmp_path, http_port=5055, ws_port=5057)

    async def fake_run():
        raise OSError("bind error")

    monkeypatch.setattr(server, "_run_ws_server", fake_run)
    server._loop = asyncio.new_event_loop()
    server._start_ws()
    assert server._loop.is_closed()
    assert "failed to start" in caplog.text
    assert "5057" in caplog.text


def test_broadcast_reload_schedules_on_loop(monkeypatch):
    server = DevServer(Path("."))
    called = {}

    def fake_runner(coro, loop):
        called["loop"] = loop
        new_loop = asyncio.new_event_loop()
        try:
            return new_loop.run_until_complete(coro)
        finally:
            new_loop.close()

    server._loop = RunningLoop()
    monkeypatch.setattr("sitepipe.server.asyncio.run_coroutine_threadsafe", fake_runner)
    server._broadcast_reload()
    assert called["loop"] is server._loop


def test_stop_and_ws_handler(tmp_path):
    server = DevServer(tmp_path)
    server.stop()

    class DummyHTTPD:
        def __init__(self):
            self.calls = []

        def shutdown(self):
            self.calls.append("shutdown")

    httpd = DummyHTTPD()
    server._httpd = httpd
    server.stop()
    assert httpd.calls == ["shutdown"]
    assert server._httpd is None

    class DummyWS:
        def __init__(self):
            self.closed = False

        async def wait_closed(self):
            self.closed = True

    ws = DummyWS()
    asyncio.run(server._ws_handler(ws))
    assert ws.closed
    assert ws not in server._ws_clients


def test_reload_handler_injects_script(tmp_path):
    (tmp_path / "index.html").write_text("<html><body>Hello</body></html>", encoding="utf-8")
    codes = []
    handler = make_handler(tmp_path, "/index.html", codes)

    result = _ReloadHandler.send_head(handler)

    body = handler.wfile.getvalue().decode()
    assert result is None
    assert codes == [200]
    assert body.index("WebSocket") < body.index("</body>")


def test_reload_handler_without_body_tag(tmp_path):
    (tmp_path / "plain.html").write_text("<html>No body here</html>", encoding="utf-8")
    handler = make_handler(tmp_path, "/plain.html", [])
    _ReloadHandler.send_head(handler)
    assert handler.wfile.getvalue().decode().rstrip().endswith("</script>")


def test_send_head_falls_back_for_assets(tmp_path):
    (tmp_path / "style.css").write_text("body{}", encoding="utf-8")
    handler = make_handler(tmp_path, "/style.css", [])
    result = _ReloadHandler.send_head(handler)
    assert result is not None
    result.close()


def test_serve_404_uses_custom_page(tmp_path):
    (tmp_path / "404.html").write_text("<html><body>oops</body></html>", encoding="utf-8")
    codes = []
    handler = make_handler(tmp_path, "/missing", codes)

    result = _ReloadHandler._serve_404(handler)

    body = handler.wfile.getvalue().decode()
    assert result is None
    assert codes == [404]
    assert "oops" in body
    assert "reload" in body


def test_send_head_serves_directory_index(tmp_path):
    posts = tmp_path / "posts"
    posts.mkdir()
    (posts / "index.html").write_text("<html><body>index</body></html>", encoding="utf-8")
    codes = []
    handler = make_handler(tmp_path, "/posts/", codes)

    assert _ReloadHandler.send_head(handler) is None
    assert codes == [200]
    assert b"index" in handler.wfile.getvalue()


def test_missing_file_is_a_404(tmp_path):
    codes = []
    handler = make_handler(tmp_path, "/missing.html", codes)
    assert _ReloadHandler.send_head(handler) is None
    assert codes == [("error", 404)]


def test_directory_without_index_is_a_404(tmp_path):
    posts = tmp_path / "posts"
    posts.mkdir()
    (posts / "note.txt").write_text("hi", encoding="utf-8")
    codes = []
    handler = make_handler(tmp_path, "/posts/", codes)
    assert _ReloadHandler.send_head(handler) is None
    assert codes == [("error", 404)]


def test_inject_reload_client_before_last_body_tag():
    html = "<html><BODY><p>&lt;/body&gt;</p></BODY></html>"
    assert inject_reload_client(html, "<s/>") == (
        "<html><BODY><p>&lt;/body&gt;</p><s/></BODY></html>"
    )
    assert inject_reload_client("<p>x</p>", "<s/>") == "<p>x</p><s/>"


def test_extensionless_permalink_serves_html_file(tmp_path):
    (tmp_path / "about.html").write_text("<html><body>about</body></html>", encoding="utf-8")
    codes = []
    handler = make_handler(tmp_path, "/about", codes)

    assert _ReloadHandler.send_head(handler) is None
    assert codes == [200]
    assert b"about" in handler.wfile.getvalue()


def test_construction_creates_no_event_loop(tmp_path):
    server = DevServer(tmp_path)
    assert server._loop is None
    server.reload()
    server.stop()
    assert server._loop is None
