"""
=============================================================================
CLIENT CONNECTIONS
=============================================================================

One Connection per accepted socket. It frames requests on the way in and
pushes response bytes on the way out.

=============================================================================
FRAMING A REQUEST OUT OF A BYTE STREAM
=============================================================================

TCP delivers bytes, not messages. A single recv() can hold half a request
or a request and a half, so reads go through a buffer:

    recv() ──► _buffer ──► find b"\\r\\n\\r\\n" ──► Content-Length ──► slice
                  ▲                                                   │
                  └──────────── leftover bytes (pipelining) ◄─────────┘

=============================================================================
LIFECYCLE
=============================================================================

    NEW ──► READING ──► PROCESSING ──► WRITING ──► KEEP_ALIVE ─┐
                ▲                                               │
                └───────────────────────────────────────────────┘
                                      │
                                      ▼
                              CLOSING ──► CLOSED

abort() may be called from another thread (Service.stop) to unblock a
worker stuck in recv().

=============================================================================
"""

import socket
import ssl
import time
import logging
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid

from ..errors import ResponseWriteError
from ..http.request import HTTPParseError


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Where a connection is in its lifecycle."""
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """
    A client connection.

    Attributes:
        socket: The client socket (plain or TLS-wrapped).
        address: Peer (ip, port).
        id: Short identifier used in log lines.
        state: Current lifecycle state.
        requests_handled: Requests read on this connection so far.
    """

    socket: socket.socket
    address: tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)
    _send_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    @property
    def age(self) -> float:
        return time.time() - self.created_at

    @property
    def is_tls(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    def handshake(self) -> None:
        """
        Complete the TLS handshake (a no-op on plain sockets).

        Runs on the worker thread so a slow client never stalls accept().

        Raises:
            ssl.SSLError, OSError: If the handshake fails.
        """
        if self.is_tls:
            self.socket.do_handshake()

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete request (headers plus Content-Length body).

        Returns:
            The request bytes, or None if the peer closed the connection
            (or went quiet past the keep-alive timeout).

        Raises:
            TimeoutError: If the first request does not arrive in time.
            HTTPParseError: If the request grows past max_request_size (413).
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk
                self._check_size()

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break
                self._buffer += chunk
                self._check_size()

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            self.state = ConnectionState.PROCESSING
            self.last_activity = time.time()
            return request_data

        except socket.timeout:
            if self.requests_handled > 0 and not self._buffer:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            if not self.is_closed:
                try:
                    self.socket.settimeout(self.timeout)
                except OSError:
                    pass

    def _check_size(self) -> None:
        if len(self._buffer) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(self._buffer)} bytes",
                status_code=413
            )

    def _recv(self) -> bytes:
        try:
            data = self.socket.recv(self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError):
            return b""
        except OSError:
            # Socket closed under us by abort()
            if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
                return b""
            raise

    def _parse_content_length(self, headers: bytes) -> int:
        """Content-Length from raw header bytes, 0 if absent or invalid."""
        for line in headers.decode("iso-8859-1").lower().split("\r\n"):
            if line.startswith("content-length:"):
                try:
                    return max(0, int(line.split(":", 1)[1].strip()))
                except ValueError:
                    return 0
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_all(self, data: bytes) -> None:
        """
        Send every byte or raise.

        Raises:
            ResponseWriteError: If the connection is closed or the peer
                                went away.
        """
        if self.is_closed:
            raise ResponseWriteError(f"[{self.id}] connection closed")
        self.state = ConnectionState.WRITING
        with self._send_lock:
            try:
                self.socket.sendall(data)
            except OSError as e:
                logger.debug(f"[{self.id}] Send failed: {e}")
                raise ResponseWriteError(str(e)) from e
        self.last_activity = time.time()

    def send_response(self, data: bytes) -> bool:
        """Send a fully-built response. Returns False if the peer is gone."""
        try:
            self.send_all(data)
            return True
        except ResponseWriteError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def abort(self) -> None:
        """
        Unblock any reader or writer by shutting the socket down.

        Safe to call from another thread. The owning worker still calls
        close() afterwards.
        """
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        self.state = ConnectionState.CLOSING
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def close(self):
        """Half-close, drain what the peer still sends, then release the socket."""
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
