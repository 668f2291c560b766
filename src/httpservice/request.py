"""
=============================================================================
REQUEST
=============================================================================

A Request is what a handler receives: the parsed inbound message, the
writer to answer on, and everything that identifies this one exchange.

    ┌──────────────────────────────────────────────────────────────────┐
    │  Request                                                         │
    │    id            uuid4, also stamped on every log line           │
    │    session_name  cookie/session name, "http-session" by default  │
    │    context       cancelled on stop, disconnect or deadline       │
    │    http_request  parsed HTTPRequest (read side)                  │
    │    writer        ResponseWriter (write side)                     │
    └──────────────────────────────────────────────────────────────────┘

One Request exists per inbound request and lives on the worker thread
that owns the connection; it is not shared across threads.

=============================================================================
"""

import uuid
from typing import Optional

from .context import Context
from .errors import RequestStateError
from .http.request import HTTPRequest
from .http.writer import ResponseWriter
from .response import ResponseBuilder


SESSION_NAME = "http-session"


class Request:
    """
    Per-request identity plus read and write handles.

    The session name may be overridden once, and only until a session is
    started on the request; after that it is fixed for the life of the
    request. Reading session_name never fixes it.

    Example:
        def handler(request: Request) -> None:
            request.response_builder() \\
                .with_header("Content-Type", "text/plain") \\
                .with_status(200) \\
                .with_body(b"hi") \\
                .send()
    """

    __slots__ = ("_id", "_session_name", "_session_name_fixed", "_context", "_http_request", "_writer")

    def __init__(
        self,
        context: Context,
        http_request: HTTPRequest,
        writer: ResponseWriter,
        request_id: Optional[uuid.UUID] = None,
    ):
        self._id = request_id or uuid.uuid4()
        self._session_name = SESSION_NAME
        self._session_name_fixed = False
        self._context = context
        self._http_request = http_request
        self._writer = writer

    @property
    def id(self) -> uuid.UUID:
        return self._id

    @property
    def context(self) -> Context:
        return self._context

    @property
    def http_request(self) -> HTTPRequest:
        return self._http_request

    @property
    def writer(self) -> ResponseWriter:
        return self._writer

    @property
    def session_name(self) -> str:
        return self._session_name

    def claim_session_name(self) -> str:
        """Fix the session name and return it. Called by Session.start()."""
        self._session_name_fixed = True
        return self._session_name

    def with_session_name(self, name: str) -> "Request":
        """
        Override the session name.

        Raises:
            RequestStateError: If the name was already overridden or a
                               session was started.
            ValueError: If name is empty.
        """
        if not name:
            raise ValueError("session name must not be empty")
        if self._session_name_fixed:
            raise RequestStateError(
                f"session name is already fixed as {self._session_name!r}"
            )
        self._session_name = name
        self._session_name_fixed = True
        return self

    def response_builder(self) -> ResponseBuilder:
        """A fresh ResponseBuilder bound to this request."""
        return ResponseBuilder(self)

    def __repr__(self) -> str:
        return (
            f"<Request {self._id} {self._http_request.method} "
            f"{self._http_request.path}>"
        )
