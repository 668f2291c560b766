"""
=============================================================================
RESPONSES
=============================================================================

Handlers answer through a ResponseBuilder. Headers and status go to the
writer as soon as they are set; the body is deferred: the builder holds a
ResponseDataFunc and only calls it inside send().

    request.response_builder()
        .with_header("Content-Type", "application/json")  ──► writer now
        .with_status(200)                                  ──► writer now
        .with_body_func(json_data(items))                  ──► stored
        .send()                                            ──► produce, write

=============================================================================
RESPONSE DATA FUNCTIONS
=============================================================================

A ResponseDataFunc is any zero-argument callable returning the body bytes
or raising. Four constructors cover the usual cases:

    ┌──────────────────────┬───────────────────────────────────────────────┐
    │  binary_data(b)      │  returns b, every time                        │
    │  string_data(s)      │  returns s as UTF-8                           │
    │  json_data(v)        │  returns v as compact JSON, or raises         │
    │  binary_stream_data  │  writes chunks from a Channel itself, returns │
    │    (ctx, req, ch)    │  b"" (see below)                              │
    └──────────────────────┴───────────────────────────────────────────────┘

=============================================================================
STREAMING
=============================================================================

binary_stream_data drains a Channel into the writer while watching the
request context:

    producer thread          ChannelStream              writer
    ───────────────          ─────────────              ──────
    ch.send(c1)      ──►     next() → c1        ──►     write(c1)
    ch.send(c2)      ──►     next() → c2        ──►     write(c2)
    ch.close()       ──►     StopIteration               → returns b""

    ctx.cancel()     ──►     next() raises ContextDone   → returns b""
                                                           (not an error)
    write(c2) fails  ──►     logged, re-raised            → send() fails

No chunk is written after cancellation is observed, chunks are written in
the order they were received, and the stream is always closed.

=============================================================================
"""

import json
import logging
from typing import Any, Callable, Optional, TYPE_CHECKING

from .channel import Channel, ChannelStream
from .context import Context
from .errors import ContextDone
from .http.status_codes import HTTPStatus, reason_phrase
from .log import request_logger

if TYPE_CHECKING:
    from .request import Request


logger = logging.getLogger(__name__)


ResponseDataFunc = Callable[[], bytes]


# =============================================================================
# RESPONSE DATA CONSTRUCTORS
# =============================================================================

def binary_data(data: bytes) -> ResponseDataFunc:
    """Body that is exactly data."""
    def produce() -> bytes:
        return data
    return produce


def string_data(text: str) -> ResponseDataFunc:
    """Body that is text encoded as UTF-8."""
    def produce() -> bytes:
        return text.encode("utf-8")
    return produce


def json_data(value: Any) -> ResponseDataFunc:
    """
    Body that is value serialized as compact JSON.

    Serialization happens when the function is called, so a value that
    cannot be encoded makes send() fail with TypeError or ValueError and
    nothing is written.
    """
    def produce() -> bytes:
        return json.dumps(value, separators=(",", ":"), allow_nan=False).encode("utf-8")
    return produce


def binary_stream_data(ctx: Context, request: "Request", channel: Channel[bytes]) -> ResponseDataFunc:
    """
    Body streamed from channel straight to request.writer.

    The returned function blocks until the channel is closed and drained
    or ctx is done, writing every chunk as it arrives. It returns b"" in
    both cases; the only error it raises is a failed write.
    """
    def produce() -> bytes:
        log = request_logger(logger, request)
        stream = ChannelStream(channel, ctx)
        try:
            for chunk in stream:
                try:
                    request.writer.write(chunk)
                except Exception:
                    log.error("error writing to stream", exc_info=True)
                    raise
        except ContextDone as e:
            log.debug(f"context done: {e}")
        finally:
            try:
                stream.close()
            except Exception:
                log.exception("error closing stream")
        return b""
    return produce


# =============================================================================
# RESPONSE BUILDER
# =============================================================================

class ResponseBuilder:
    """
    Fluent response assembly bound to one Request.

    with_header() and with_status() act on the writer immediately, so call
    them in wire order: headers, then status, then send(). The body
    function is replaceable until send(); without one the body is empty.

    send() may be called again, and each call runs the current body
    function again. That is rarely what you want: the status line has
    already gone out, so only the body bytes repeat.
    """

    def __init__(self, request: "Request"):
        self.request = request
        self.body_func: Optional[ResponseDataFunc] = None

    def with_header(self, key: str, value: str) -> "ResponseBuilder":
        self.request.writer.set_header(key, value)
        return self

    def with_status(self, status: int) -> "ResponseBuilder":
        self.request.writer.write_header(status)
        return self

    def with_body(self, body: bytes) -> "ResponseBuilder":
        self.body_func = binary_data(body)
        return self

    def with_body_func(self, body_func: ResponseDataFunc) -> "ResponseBuilder":
        self.body_func = body_func
        return self

    def send(self) -> None:
        """
        Produce the body and write it.

        Raises:
            Exception: Whatever the body function raised (nothing is
                       written in that case), or the writer's error.
        """
        log = request_logger(logger, self.request)

        body = b""
        if self.body_func is not None:
            try:
                body = self.body_func()
            except Exception:
                log.error("error getting response body", exc_info=True)
                raise

        try:
            self.request.writer.write(body)
        except Exception:
            log.error("error writing response body", exc_info=True)
            raise


# =============================================================================
# ERROR RESPONSES
# =============================================================================

def error_response(request: "Request", status: int, message: Optional[str] = None) -> None:
    """
    Reply with a plain-text error.

    The body is message (the reason phrase by default) plus a newline.
    If the head was already sent only the body is written, and a
    warning is logged.
    """
    writer = request.writer
    if message is None:
        message = reason_phrase(status)

    if writer.headers_sent:
        request_logger(logger, request).warning(
            f"error_response({status}) after status {writer.status} was sent"
        )
    else:
        writer.headers.delete("Content-Length")
        writer.set_header("Content-Type", "text/plain; charset=utf-8")
        writer.set_header("X-Content-Type-Options", "nosniff")
        writer.write_header(status)
    writer.write((message + "\n").encode("utf-8"))


def _status_helper(status: HTTPStatus) -> Callable[..., None]:
    def helper(request: "Request", message: Optional[str] = None) -> None:
        error_response(request, status, message)
    helper.__name__ = status.name.lower()
    helper.__doc__ = f"Reply {int(status)} {status.phrase}."
    return helper


bad_request = _status_helper(HTTPStatus.BAD_REQUEST)
unauthorized = _status_helper(HTTPStatus.UNAUTHORIZED)
forbidden = _status_helper(HTTPStatus.FORBIDDEN)
not_found = _status_helper(HTTPStatus.NOT_FOUND)
method_not_allowed = _status_helper(HTTPStatus.METHOD_NOT_ALLOWED)
conflict = _status_helper(HTTPStatus.CONFLICT)
gone = _status_helper(HTTPStatus.GONE)
too_many_requests = _status_helper(HTTPStatus.TOO_MANY_REQUESTS)
internal_server_error = _status_helper(HTTPStatus.INTERNAL_SERVER_ERROR)
not_implemented = _status_helper(HTTPStatus.NOT_IMPLEMENTED)
service_unavailable = _status_helper(HTTPStatus.SERVICE_UNAVAILABLE)
gateway_timeout = _status_helper(HTTPStatus.GATEWAY_TIMEOUT)
insufficient_storage = _status_helper(HTTPStatus.INSUFFICIENT_STORAGE)
loop_detected = _status_helper(HTTPStatus.LOOP_DETECTED)
not_extended = _status_helper(HTTPStatus.NOT_EXTENDED)
