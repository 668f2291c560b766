"""
=============================================================================
HTTP TRANSPORT
=============================================================================

The HTTP/1.1 wire layer underneath the service:

    ┌──────────────────┬──────────────────────────────────────────────────┐
    │  request.py      │  bytes → HTTPRequest (RequestParser)             │
    │  writer.py       │  ResponseWriter → bytes (status, headers, body)  │
    │  mux.py          │  path → handler (exact and subtree patterns)     │
    │  status_codes.py │  HTTPStatus and reason phrases                   │
    └──────────────────┴──────────────────────────────────────────────────┘

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .writer import (
    Headers,
    ResponseWriter,
    SocketResponseWriter,
    ResponseRecorder,
    format_http_date,
)
from .mux import ServeMux, Route, Handler
from .status_codes import HTTPStatus, reason_phrase, body_allowed

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",

    "Headers",
    "ResponseWriter",
    "SocketResponseWriter",
    "ResponseRecorder",
    "format_http_date",

    "ServeMux",
    "Route",
    "Handler",

    "HTTPStatus",
    "reason_phrase",
    "body_allowed",
]
