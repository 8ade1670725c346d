from __future__ import annotations

import gzip
import http.server
import json
import ssl
import sys
import threading
import time
from pathlib import Path
from urllib.parse import urlsplit

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

GZIP_TEXT = b"compressed hello from the test server"


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, value: float) -> None:
        self.current += value


class RecordingHandler(http.server.BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        self.server.recorded.append(  # type: ignore[attr-defined]
            {
                "client": self.client_address,
                "method": self.command,
                "path": self.path,
                "headers": dict(self.headers),
                "body": body,
            }
        )
        return body

    def _send(self, status: int, payload: bytes, headers: dict[str, str] | None = None) -> None:
        self.send_response(status)
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def _echo(self, body: bytes) -> None:
        payload = json.dumps(
            {
                "method": self.command,
                "path": self.path,
                "cookie": self.headers.get("Cookie"),
                "length": len(body),
            }
        ).encode("utf-8")
        self._send(200, payload, {"Content-Type": "application/json"})

    def do_GET(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        body = self._read_body()
        route = urlsplit(self.path).path
        if route == "/gzip":
            self._send(
                200,
                gzip.compress(GZIP_TEXT),
                {"Content-Encoding": "gzip", "Content-Type": "text/plain; charset=utf-8"},
            )
        elif route == "/set-cookie":
            self._send(200, b"ok", {"Set-Cookie": "token=xyz; Path=/"})
        elif route == "/redirect":
            self._send(302, b"", {"Location": "/echo"})
        elif route == "/slow":
            time.sleep(1.0)
            self._send(200, b"late")
        else:
            self._echo(body)

    def do_POST(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        self._echo(self._read_body())

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return


class QuietServer(http.server.ThreadingHTTPServer):
    daemon_threads = True

    def handle_error(self, request, client_address) -> None:
        # Clients in the timeout tests hang up before the handler replies.
        return


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=100.0)


@pytest.fixture
def http_server():
    server = QuietServer(("127.0.0.1", 0), RecordingHandler)
    server.recorded = []  # type: ignore[attr-defined]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def base_url(http_server) -> str:
    host, port = http_server.server_address[:2]
    return f"http://{host}:{port}"


@pytest.fixture
def tls_server(tmp_path):
    """Recording server behind TLS, signed by a throwaway CA written to ``ca_file``."""

    trustme = pytest.importorskip("trustme")
    authority = trustme.CA()
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    authority.issue_cert("127.0.0.1").configure_cert(context)

    server = QuietServer(("127.0.0.1", 0), RecordingHandler)
    server.recorded = []  # type: ignore[attr-defined]
    server.socket = context.wrap_socket(server.socket, server_side=True)
    server.ca_file = tmp_path / "ca.pem"  # type: ignore[attr-defined]
    authority.cert_pem.write_to_path(str(server.ca_file))  # type: ignore[attr-defined]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def tls_url(tls_server) -> str:
    host, port = tls_server.server_address[:2]
    return f"https://{host}:{port}"
