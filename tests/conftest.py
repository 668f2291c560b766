"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Callable, Dict, Generator, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpservice import Request, ResponseRecorder, Service, ServiceConfig, background
from httpservice.context import Context
from httpservice.http import HTTPRequest


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/items?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Cookie: http-session=abc.def; theme=dark\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def make_request() -> Callable[..., Request]:
    """Factory for Requests backed by a ResponseRecorder."""

    def factory(
        method: str = "GET",
        path: str = "/",
        headers: Optional[Dict[str, str]] = None,
        body: bytes = b"",
        ctx: Optional[Context] = None,
        writer=None,
    ) -> Request:
        http_request = HTTPRequest(
            method=method,
            path=path,
            headers={k.lower(): v for k, v in (headers or {}).items()},
            body=body,
            client_address=("127.0.0.1", 50000),
        )
        return Request(ctx or background(), http_request, writer or ResponseRecorder())

    return factory


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def service_config() -> ServiceConfig:
    """Configuration for services started inside tests."""
    return ServiceConfig(
        hostname="127.0.0.1",
        port=0,
        min_workers=2,
        max_workers=4,
        request_timeout=5.0,
        keep_alive_timeout=1.0,
        log_level="WARNING",
    )


class ServiceRunner:
    """Runs a Service on a background thread."""

    def __init__(self, service: Service):
        self.service = service
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.service.address[1]

    def start(self) -> "ServiceRunner":
        self._thread = threading.Thread(target=self.service.start, daemon=True)
        self._thread.start()
        if not self.service.wait_until_ready(timeout=5.0):
            raise RuntimeError("Service failed to start")
        return self

    def stop(self) -> None:
        if self.service.is_running:
            self.service.stop()
        if self._thread is not None:
            self._thread.join(timeout=10.0)

    def request(self, raw: bytes, timeout: float = 5.0) -> bytes:
        """Send raw bytes and read until the server closes the connection."""
        with socket.create_connection(("127.0.0.1", self.port), timeout=timeout) as sock:
            sock.sendall(raw)
            chunks = []
            while True:
                data = sock.recv(65536)
                if not data:
                    break
                chunks.append(data)
        return b"".join(chunks)

    def get(self, path: str, method: str = "GET", headers: Optional[Dict[str, str]] = None) -> Tuple[int, Dict[str, str], bytes]:
        lines = [f"{method} {path} HTTP/1.1", "Host: localhost", "Connection: close"]
        for name, value in (headers or {}).items():
            lines.append(f"{name}: {value}")
        raw = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")
        return parse_response(self.request(raw))

    def send(self, raw: bytes) -> Tuple[int, Dict[str, str], bytes]:
        """Send raw bytes and parse the response."""
        return parse_response(self.request(raw))

    @staticmethod
    def parse(raw: bytes) -> Tuple[int, Dict[str, str], bytes]:
        return parse_response(raw)


def parse_response(raw: bytes) -> Tuple[int, Dict[str, str], bytes]:
    """Split a raw HTTP/1.x response into (status, lowercase headers, decoded body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()

    if headers.get("transfer-encoding") == "chunked":
        decoded = b""
        while body:
            size_line, _, rest = body.partition(b"\r\n")
            size = int(size_line, 16)
            if size == 0:
                break
            decoded += rest[:size]
            body = rest[size + 2:]
        body = decoded
    return status, headers, body


@pytest.fixture
def service_runner(service_config: ServiceConfig) -> Generator[Callable[[Service], ServiceRunner], None, None]:
    """Start services on background threads; all are stopped at teardown."""
    runners = []

    def start(service: Service) -> ServiceRunner:
        runner = ServiceRunner(service).start()
        runners.append(runner)
        return runner

    yield start

    for runner in runners:
        runner.stop()


@pytest.fixture
def running_service(service_config: ServiceConfig, service_runner) -> ServiceRunner:
    """A started Service with a /hello route."""
    service = Service(service_config, install_signal_handlers=False)

    @service.route("/hello")
    def hello(request: Request) -> None:
        (request.response_builder()
            .with_header("Content-Type", "text/plain")
            .with_status(200)
            .with_body(b"hi")
            .send())

    return service_runner(service)
