from __future__ import annotations

import io
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Iterator

import pytest

from tools.waitctl.metrics import MetricRecorder
from tools.waitctl.wait import Poller


class EchoServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), EchoHandler)
        self.seen: list[tuple[str, str]] = []
        self.unavailable_for = 0

    @property
    def address(self) -> str:
        host, port = self.server_address[:2]
        return f"{host}:{port}"


class EchoHandler(BaseHTTPRequestHandler):
    server: EchoServer

    def do_GET(self) -> None:
        host = self.headers.get("Host", "")
        self.server.seen.append((host, self.path))

        if self.path == "/missing":
            self._reply(404, b"not here")
        elif self.path == "/warming" and self.server.unavailable_for > 0:
            self.server.unavailable_for -= 1
            self._reply(503, b"warming up")
        else:
            self._reply(200, f"hello from {host}".encode())

    def _reply(self, status: int, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:
        pass


@pytest.fixture
def http_server() -> Iterator[EchoServer]:
    server = EchoServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def metrics_out() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def poller(metrics_out: io.StringIO) -> Poller:
    return Poller(MetricRecorder(stream=metrics_out))
