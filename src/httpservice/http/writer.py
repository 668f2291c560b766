"""
=============================================================================
RESPONSE WRITERS
=============================================================================

The write side of the transport. Handlers never build a response object
and return it; they write through a ResponseWriter, and bytes leave as soon
as they are written. That is what makes streaming bodies possible.

=============================================================================
WRITE-ONCE HEAD
=============================================================================

    set_header(...)      ─┐  mutate the pending header map
    set_header(...)      ─┘
    write_header(200)    ──► status line + headers go out NOW
    write(b"chunk 1")    ──► body bytes go out NOW
    write(b"chunk 2")    ──► ...
    finish()             ──► terminating chunk (if chunked)

Once the head is sent it cannot change:
- a second write_header() is ignored and logged as superfluous
- set_header() after the head is ignored and logged
- write() before write_header() implies write_header(200)

=============================================================================
BODY FRAMING (decided when the head is sent)
=============================================================================

    ┌───────────────────────────────────┬────────────────────────────────┐
    │  Situation                        │  Framing                       │
    ├───────────────────────────────────┼────────────────────────────────┤
    │  Content-Length header set        │  fixed length                  │
    │  HEAD request, 1xx/204/304 status │  no body                       │
    │  HTTP/1.1 otherwise               │  Transfer-Encoding: chunked    │
    │  HTTP/1.0 otherwise               │  body ends when socket closes  │
    └───────────────────────────────────┴────────────────────────────────┘

Chunked encoding lets the server start sending before it knows how long
the body is:

    1A\\r\\n                      ← chunk size in hex
    <26 bytes of data>\\r\\n
    0\\r\\n\\r\\n                  ← terminating chunk

=============================================================================
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..errors import ResponseWriteError
from .request import HTTPRequest
from .status_codes import body_allowed, reason_phrase


logger = logging.getLogger(__name__)


class Headers:
    """
    Case-insensitive, multi-valued header map.

    The spelling of the first set() wins for output. set() replaces all
    values for a name; add() appends (needed for Set-Cookie).
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, Tuple[str, List[str]]] = {}
        for name, value in (initial or {}).items():
            self.set(name, value)

    def set(self, name: str, value: str) -> None:
        key = name.lower()
        spelled = self._items[key][0] if key in self._items else name
        self._items[key] = (spelled, [str(value)])

    def add(self, name: str, value: str) -> None:
        key = name.lower()
        if key in self._items:
            self._items[key][1].append(str(value))
        else:
            self._items[key] = (name, [str(value)])

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value for name, or default."""
        entry = self._items.get(name.lower())
        return entry[1][0] if entry else default

    def get_all(self, name: str) -> List[str]:
        entry = self._items.get(name.lower())
        return list(entry[1]) if entry else []

    def delete(self, name: str) -> None:
        self._items.pop(name.lower(), None)

    def items(self) -> Iterator[Tuple[str, str]]:
        """(name, value) pairs, one per value."""
        for name, values in self._items.values():
            for value in values:
                yield name, value

    def copy(self) -> "Headers":
        clone = Headers()
        for name, value in self.items():
            clone.add(name, value)
        return clone

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._items

    def __getitem__(self, name: str) -> str:
        entry = self._items.get(name.lower())
        if entry is None:
            raise KeyError(name)
        return entry[1][0]

    def __setitem__(self, name: str, value: str) -> None:
        self.set(name, value)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Headers({dict((n, v) for n, v in self.items())!r})"


class ResponseWriter(ABC):
    """
    Base class for the write side of an HTTP exchange.

    Subclasses decide where the bytes go (_send_head, _send_body,
    _send_end). The base class enforces the write-once head.

    Attributes:
        headers: Pending response headers.
        status: Status code once written, else None.
        bytes_written: Body bytes accepted by write().
    """

    def __init__(self):
        self.headers = Headers()
        self.status: Optional[int] = None
        self.bytes_written = 0
        self._headers_sent = False
        self._finished = False

    @property
    def headers_sent(self) -> bool:
        return self._headers_sent

    @property
    def finished(self) -> bool:
        return self._finished

    def header(self) -> Headers:
        """The mutable pending header map."""
        return self.headers

    def set_header(self, name: str, value: str) -> None:
        """Set a header. Ignored (and logged) once the head is sent."""
        if self._headers_sent:
            logger.warning(f"Header {name!r} set after the response head was sent; ignored")
            return
        self.headers.set(name, value)

    def write_header(self, status: int) -> None:
        """
        Send the status line and headers.

        Only the first call has any effect.
        """
        if self._headers_sent:
            logger.warning(
                f"Superfluous write_header({status}) call; status {self.status} already sent"
            )
            return
        self.status = int(status)
        self._headers_sent = True
        self._send_head(self.status)

    def write(self, data: bytes) -> int:
        """
        Write body bytes, sending the head first if needed.

        Returns:
            Number of bytes accepted.

        Raises:
            ResponseWriteError: If the underlying transport fails.
        """
        if not self._headers_sent:
            self.write_header(200)
        if not data:
            return 0
        if isinstance(data, str):
            raise TypeError("write() takes bytes, not str")
        if not self._body_allowed():
            logger.debug(f"Discarding {len(data)} body bytes for status {self.status}")
            return len(data)
        self._send_body(bytes(data))
        self.bytes_written += len(data)
        return len(data)

    def finish(self) -> None:
        """Complete the response. Safe to call more than once."""
        if self._finished:
            return
        if not self._headers_sent:
            if "Content-Length" not in self.headers and "Transfer-Encoding" not in self.headers:
                self.headers.set("Content-Length", "0")
            self.write_header(200)
        self._finished = True
        self._send_end()

    def _body_allowed(self) -> bool:
        return body_allowed(self.status or 200)

    @abstractmethod
    def _send_head(self, status: int) -> None:
        """Emit the status line and headers."""

    @abstractmethod
    def _send_body(self, data: bytes) -> None:
        """Emit body bytes."""

    def _send_end(self) -> None:
        """Emit whatever marks the end of the body."""


class SocketResponseWriter(ResponseWriter):
    """
    ResponseWriter over a live client Connection.

    Args:
        connection: The client connection (anything with send_all(bytes)).
        request: The request being answered; decides HEAD handling and
                 whether chunked encoding is available.
        server_name: Value for the Server header.
        on_error: Called once when the socket fails, e.g. to cancel the
                  request context after a client disconnect.
    """

    def __init__(
        self,
        connection,
        request: HTTPRequest,
        server_name: str = "httpservice/1.0",
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        super().__init__()
        self.connection = connection
        self.request = request
        self.server_name = server_name
        self.on_error = on_error
        self.chunked = False
        self.must_close = False
        self.broken = False
        self._declared_length: Optional[int] = None

    @property
    def should_close(self) -> bool:
        """Whether the connection must close after this response."""
        if self.must_close or self.broken:
            return True
        return (self.headers.get("Connection") or "").lower() == "close"

    def _send_head(self, status: int) -> None:
        self._choose_framing(status)

        if "Date" not in self.headers:
            self.headers.set("Date", format_http_date(datetime.now(timezone.utc)))
        if "Server" not in self.headers:
            self.headers.set("Server", self.server_name)

        lines = [f"{self.request.version} {status} {reason_phrase(status)}"]
        for name, value in self.headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")
        head = "\r\n".join(lines).encode("iso-8859-1") + b"\r\n"
        self._send(head)

    def _choose_framing(self, status: int) -> None:
        length = self.headers.get("Content-Length")
        if length is not None:
            try:
                declared = int(length)
            except ValueError:
                declared = -1
            if declared < 0:
                logger.warning(f"Dropping invalid Content-Length header {length!r}")
                self.headers.delete("Content-Length")
            else:
                self._declared_length = declared
                self.headers.delete("Transfer-Encoding")
                return

        if self.request.method == "HEAD" or not body_allowed(status):
            return

        if self.request.version == "HTTP/1.1":
            self.headers.set("Transfer-Encoding", "chunked")
            self.chunked = True
        else:
            # HTTP/1.0 has no chunking; the body ends at close
            self.headers.set("Connection", "close")
            self.must_close = True

    def _body_allowed(self) -> bool:
        return self.request.method != "HEAD" and super()._body_allowed()

    def _send_body(self, data: bytes) -> None:
        if self._declared_length is not None:
            if self.bytes_written + len(data) > self._declared_length:
                raise ResponseWriteError(
                    f"Body exceeds declared Content-Length of {self._declared_length}"
                )
            self._send(data)
        elif self.chunked:
            self._send(f"{len(data):X}\r\n".encode("ascii") + data + b"\r\n")
        else:
            self._send(data)

    def _send_end(self) -> None:
        if self.chunked:
            self._send(b"0\r\n\r\n")
        elif (
            self._declared_length is not None
            and self._body_allowed()
            and self.bytes_written < self._declared_length
        ):
            # The client is still waiting for bytes that will never come
            logger.warning(
                f"Handler wrote {self.bytes_written} of {self._declared_length} declared bytes"
            )
            self.must_close = True

    def _send(self, data: bytes) -> None:
        if self.broken:
            raise ResponseWriteError("connection already failed")
        try:
            self.connection.send_all(data)
        except OSError as e:
            self.broken = True
            if self.on_error is not None:
                self.on_error(e)
            if isinstance(e, ResponseWriteError):
                raise
            raise ResponseWriteError(str(e)) from e


class ResponseRecorder(ResponseWriter):
    """
    ResponseWriter that keeps everything in memory.

    Used to exercise handlers without a socket:

        recorder = ResponseRecorder()
        handler(Request(ctx, HTTPRequest("GET", "/health"), recorder))
        assert recorder.code == 200
        assert recorder.body == b"OK"
    """

    def __init__(self):
        super().__init__()
        self.chunks: List[bytes] = []
        self.sent_headers: Optional[Headers] = None
        self.write_header_calls = 0

    @property
    def code(self) -> int:
        """Status code, defaulting to 200 like a real client would see."""
        return self.status if self.status is not None else 200

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)

    def write_header(self, status: int) -> None:
        self.write_header_calls += 1
        super().write_header(status)

    def _send_head(self, status: int) -> None:
        self.sent_headers = self.headers.copy()

    def _send_body(self, data: bytes) -> None:
        self.chunks.append(data)


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231), always in GMT.

    Example: Wed, 01 Jan 2026 12:00:00 GMT
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    dt = dt.astimezone(timezone.utc)
    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )
