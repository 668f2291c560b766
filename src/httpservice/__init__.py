"""
=============================================================================
HTTPSERVICE - Request/Response Layer for a Socket-Level HTTP/1.1 Server
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       HTTPSERVICE LAYERS                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   Service          start/stop, TLS, /health, 501 fallback           │
    │     │                                                               │
    │   Request          id, session name, context, read + write handles  │
    │     │                                                               │
    │   ResponseBuilder  headers → status → deferred body → send()        │
    │     │                                                               │
    │   ResponseDataFunc binary / string / json / channel stream          │
    │     │                                                               │
    │   http/            parser, ResponseWriter, ServeMux, status codes   │
    │     │                                                               │
    │   core/            accept loop, connections, worker pool            │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
QUICK START
=============================================================================

    from httpservice import Service, ServiceConfig, json_data

    service = Service(ServiceConfig(port=8080))

    @service.route("/items")
    def items(request):
        request.response_builder() \\
            .with_header("Content-Type", "application/json") \\
            .with_status(200) \\
            .with_body_func(json_data({"items": [1, 2, 3]})) \\
            .send()

    service.start()

Streaming from a producer thread:

    ch = Channel()
    threading.Thread(target=produce_into, args=(ch,)).start()
    request.response_builder() \\
        .with_status(200) \\
        .with_body_func(binary_stream_data(request.context, request, ch)) \\
        .send()

=============================================================================
"""

__version__ = "1.0.0"

from .channel import Channel, ChannelStream
from .config import ServiceConfig
from .context import Context, background, with_cancel, with_deadline, with_timeout
from .errors import (
    ChannelClosedError,
    ContextCancelledError,
    ContextDone,
    DeadlineExceededError,
    RequestStateError,
    ResponseWriteError,
    ServiceAlreadyStartedError,
    ServiceError,
    ServiceNotRunningError,
    TLSConfigError,
)
from .http import HTTPParseError, HTTPRequest, HTTPStatus, ResponseRecorder, ResponseWriter, ServeMux
from .request import SESSION_NAME, Request
from .response import (
    ResponseBuilder,
    ResponseDataFunc,
    bad_request,
    binary_data,
    binary_stream_data,
    conflict,
    error_response,
    forbidden,
    gateway_timeout,
    gone,
    insufficient_storage,
    internal_server_error,
    json_data,
    loop_detected,
    method_not_allowed,
    not_extended,
    not_found,
    not_implemented,
    service_unavailable,
    string_data,
    too_many_requests,
    unauthorized,
)
from .service import Service
from .session import MemorySessionStore, Session, SessionData, SessionOptions, SessionStore

__all__ = [
    "__version__",
    # Lifecycle
    "Service",
    "ServiceConfig",
    # Per-request
    "Request",
    "SESSION_NAME",
    "ResponseBuilder",
    "ResponseDataFunc",
    "binary_data",
    "string_data",
    "json_data",
    "binary_stream_data",
    # Cancellation and streaming
    "Context",
    "background",
    "with_cancel",
    "with_deadline",
    "with_timeout",
    "Channel",
    "ChannelStream",
    # Transport
    "HTTPRequest",
    "HTTPParseError",
    "HTTPStatus",
    "ResponseWriter",
    "ResponseRecorder",
    "ServeMux",
    # Sessions
    "Session",
    "SessionData",
    "SessionOptions",
    "SessionStore",
    "MemorySessionStore",
    # Status helpers
    "error_response",
    "bad_request",
    "unauthorized",
    "forbidden",
    "not_found",
    "method_not_allowed",
    "conflict",
    "gone",
    "too_many_requests",
    "internal_server_error",
    "not_implemented",
    "service_unavailable",
    "gateway_timeout",
    "insufficient_storage",
    "loop_detected",
    "not_extended",
    # Errors
    "ServiceError",
    "ServiceAlreadyStartedError",
    "ServiceNotRunningError",
    "TLSConfigError",
    "RequestStateError",
    "ContextDone",
    "ContextCancelledError",
    "DeadlineExceededError",
    "ChannelClosedError",
    "ResponseWriteError",
]
