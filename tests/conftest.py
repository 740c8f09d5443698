"""Shared fixtures: loopback UDP/HTTP servers and probe doubles."""

from __future__ import annotations

import socket
import socketserver
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pytest

from netquality.config import config_from_dict
from netquality.measurements.latency import LatencyProvider


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def wait_for(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeLatency(LatencyProvider):
    """Returns canned RTTs in order, repeating the last one."""

    def __init__(self, values: Iterable[Optional[float]]):
        self.values = list(values)
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def probe(self, host: str) -> Optional[float]:
        with self._lock:
            self.calls.append(host)
            index = min(len(self.calls) - 1, len(self.values) - 1)
            return self.values[index]


class FakeHttpTimer:
    def __init__(self, value: float):
        self.value = value
        self.urls: List[str] = []

    def time(self, url: str) -> float:
        self.urls.append(url)
        return self.value


class _EchoHandler(socketserver.BaseRequestHandler):
    def handle(self):
        data, sock = self.request
        for _ in range(self.server.reply_count):
            sock.sendto(data, self.client_address)


class UDPResponder(socketserver.ThreadingUDPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, reply_count: int = 1):
        self.reply_count = reply_count
        super().__init__(("127.0.0.1", 0), _EchoHandler)

    @property
    def address(self) -> Tuple[str, int]:
        return self.server_address[0], self.server_address[1]


@pytest.fixture
def udp_echo_server():
    server = UDPResponder(reply_count=1)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def udp_fanin_server():
    server = UDPResponder(reply_count=3)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def silent_udp_socket():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    yield sock
    sock.close()


Route = Tuple[int, Dict[str, str], bytes]


class LocalHTTPServer:
    """Threaded loopback HTTP server with static routes and a request log."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.requests: List[dict] = []
        owner = self

        class Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def log_message(self, format, *args):  # noqa: A002
                pass

            def _serve(self, method: str) -> None:
                length = int(self.headers.get("Content-Length") or 0)
                body = self.rfile.read(length) if length else b""
                owner.requests.append(
                    {"method": method, "path": self.path, "headers": dict(self.headers), "body": body}
                )
                status, headers, payload = owner.routes.get((method, self.path), (404, {}, b"not found"))
                self.send_response(status)
                for name, value in headers.items():
                    self.send_header(name, value)
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def do_GET(self):
                self._serve("GET")

            def do_POST(self):
                self._serve("POST")

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.server.daemon_threads = True
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def route(self, method: str, path: str, status: int = 200, body: bytes = b"", headers=None) -> str:
        self.routes[(method, path)] = (status, dict(headers or {}), body)
        return self.url(path)

    def url(self, path: str) -> str:
        host, port = self.server.server_address[:2]
        return f"http://{host}:{port}{path}"

    def hits(self, method: str, path: str) -> List[dict]:
        return [r for r in self.requests if r["method"] == method and r["path"] == path]


@pytest.fixture
def http_server():
    server = LocalHTTPServer()
    server.thread.start()
    yield server
    server.server.shutdown()
    server.server.server_close()


@pytest.fixture
def unreachable_url():
    return f"http://127.0.0.1:{free_port()}/unreachable"


@pytest.fixture
def app_config(tmp_path, unreachable_url):
    closed_port = free_port()
    return config_from_dict(
        {
            "paths": {"data_dir": "data", "logs_dir": "logs"},
            "monitor": {
                "interface": "lo",
                "interval_seconds": 3600,
                "ping_target": "127.0.0.1",
                "ping_count": 1,
                "speed_test_url": unreachable_url,
                "upload_url": unreachable_url,
                "http_test_url": unreachable_url,
            },
            "latency": {"provider": "tcp", "tcp_port": closed_port, "timeout_seconds": 0.5},
        },
        tmp_path,
    )
