"""Pytest configuration and fixtures."""

import asyncio
import gzip
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from fetchxhr.abort import abortable
from fetchxhr.models import FetchResponse


def make_fetch(
    status=200,
    status_text="OK",
    headers=None,
    body=b"",
    delay=0.0,
    error=None,
    url=None,
):
    """Build an async fetch stand-in that records its calls."""
    calls = []
    resp_headers = headers or []
    resp_body = body

    async def fake_fetch(target, *, method="GET", headers=None, body=None, signal=None):
        calls.append(
            {"url": target, "method": method, "headers": headers, "body": body, "signal": signal}
        )
        if delay:
            await abortable(asyncio.sleep(delay), signal)
        if error is not None:
            raise error
        response_body = resp_body() if callable(resp_body) else resp_body
        return FetchResponse(
            status,
            status_text,
            list(resp_headers),
            url=url or target,
            body=response_body,
            signal=signal,
        )

    fake_fetch.calls = calls
    return fake_fetch


@pytest.fixture
def fetch_factory():
    """Factory for fake fetch callables."""
    return make_fetch


@pytest.fixture
def sample_response():
    """Create a sample FetchResponse object."""
    return FetchResponse(
        status=200,
        status_text="OK",
        headers=[
            ("Content-Type", "application/json"),
            ("Content-Length", "13"),
        ],
        url="https://example.test/data",
        body=b'{"key":"val"}',
    )


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds."""

    async def _wait(predicate, timeout=2.0):
        async def _poll():
            while not predicate():
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout)

    return _wait


class FixtureHandler(BaseHTTPRequestHandler):
    """Routes used by the end-to-end transport tests."""

    protocol_version = "HTTP/1.1"

    def log_message(self, format, *args):
        pass  # Suppress logging

    def _send(self, status, body=b"", headers=()):
        self.send_response(status)
        for name, value in headers:
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body and self.command != "HEAD":
            self.wfile.write(body)

    def do_HEAD(self):
        self.do_GET()

    def do_GET(self):
        if self.path == "/hello":
            self._send(200, b"hello", [("Content-Type", "text/plain"), ("X-Trace", "abc")])
        elif self.path == "/json":
            self._send(200, b'{"a":1}', [("Content-Type", "application/json")])
        elif self.path == "/headers":
            echoed = f"{self.headers.get('X-Test', '')}|{self.headers.get('User-Agent', '')}"
            self._send(200, echoed.encode(), [("Content-Type", "text/plain")])
        elif self.path == "/chunked":
            self.send_response(200)
            self.send_header("Transfer-Encoding", "chunked")
            self.send_header("Content-Type", "text/plain")
            self.end_headers()
            for i in range(3):
                chunk = f"chunk{i}\n".encode()
                self.wfile.write(f"{len(chunk):x}\r\n".encode() + chunk + b"\r\n")
            self.wfile.write(b"0\r\n\r\n")
        elif self.path == "/gzip":
            body = gzip.compress(b"compressed hello")
            self._send(200, body, [("Content-Type", "text/plain"), ("Content-Encoding", "gzip")])
        elif self.path == "/redirect":
            self._send(302, headers=[("Location", "/hello")])
        elif self.path == "/loop":
            self._send(302, headers=[("Location", "/loop")])
        elif self.path == "/method":
            self._send(200, self.command.encode(), [("Content-Type", "text/plain")])
        elif self.path == "/missing":
            self._send(404, b"nope", [("Content-Type", "text/plain")])
        elif self.path == "/empty":
            self.send_response(204)
            self.end_headers()
        elif self.path == "/slow":
            time.sleep(1.0)
            self._send(200, b"late", [("Content-Type", "text/plain")])
        elif self.path == "/slow-body":
            self.send_response(200)
            self.send_header("Content-Type", "text/plain")
            self.send_header("Content-Length", "10")
            self.end_headers()
            self.wfile.write(b"12345")
            self.wfile.flush()
            time.sleep(1.0)
            self.wfile.write(b"67890")
        else:
            self._send(404)

    def do_POST(self):
        length = int(self.headers.get("Content-Length", "0"))
        data = self.rfile.read(length)
        if self.path == "/echo":
            ctype = self.headers.get("Content-Type", "")
            self._send(200, data, [("Content-Type", "text/plain"), ("X-Request-Type", ctype)])
        elif self.path == "/see-other":
            self._send(303, headers=[("Location", "/method")])
        else:
            self._send(404)

    def do_PUT(self):
        self.do_POST()


class _QuietServer(ThreadingHTTPServer):
    daemon_threads = True
    block_on_close = False

    def handle_error(self, request, client_address):
        pass  # Aborted clients leave broken pipes behind


@pytest.fixture(scope="module")
def http_server():
    """Start a local HTTP server for testing."""
    server = _QuietServer(("127.0.0.1", 0), FixtureHandler)
    port = server.server_address[1]
    thread = threading.Thread(target=server.serve_forever)
    thread.daemon = True
    thread.start()
    yield f"http://127.0.0.1:{port}"
    server.shutdown()
    server.server_close()
