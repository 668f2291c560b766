"""
=============================================================================
SERVICE ERRORS
=============================================================================

Exception types raised across the service layer.

=============================================================================
ERROR TAXONOMY
=============================================================================

    ┌──────────────────────────┬──────────────────────────────────────────┐
    │  Exception               │  Meaning                                 │
    ├──────────────────────────┼──────────────────────────────────────────┤
    │  ServiceError            │  Base for lifecycle/configuration faults │
    │   ├ ServiceAlreadyStarted│  start() called on a running service    │
    │   ├ ServiceNotRunning    │  stop() called on a stopped service     │
    │   ├ TLSConfigError       │  Cert/key unreadable or invalid         │
    │   └ RequestStateError    │  Request/session used out of order      │
    │  ContextDone             │  Cancellation context finished          │
    │   ├ ContextCancelled     │  cancel() was called                    │
    │   └ DeadlineExceeded     │  Deadline passed                        │
    │  ChannelClosedError      │  send() on a closed channel             │
    │  ResponseWriteError      │  Socket failed while writing a response │
    └──────────────────────────┴──────────────────────────────────────────┘

Lifecycle errors are programmer or configuration mistakes: they are raised
to the caller and the top-level entry point decides whether to abort.

ContextDone is NOT a failure when it ends a streaming response. Streams
end that way whenever the client goes away or the deadline passes.

=============================================================================
"""


class ServiceError(Exception):
    """Base class for service lifecycle and configuration errors."""


class ServiceAlreadyStartedError(ServiceError):
    """Raised when start() is called on a service that is already running."""

    def __init__(self, message: str = "Service already started"):
        super().__init__(message)


class ServiceNotRunningError(ServiceError):
    """Raised when stop() is called on a service that is not running."""

    def __init__(self, message: str = "Service already stopped"):
        super().__init__(message)


class TLSConfigError(ServiceError):
    """Raised when TLS is required but the certificate material is unusable."""


class RequestStateError(ServiceError):
    """Raised when a request or session is used out of order."""


class ContextDone(Exception):
    """
    Raised by cancellation-aware operations when their context is done.

    Subclasses tell apart an explicit cancel from a passed deadline.
    """


class ContextCancelledError(ContextDone):
    """The context was cancelled explicitly (or its parent was)."""

    def __init__(self, message: str = "context canceled"):
        super().__init__(message)


class DeadlineExceededError(ContextDone):
    """The context deadline passed."""

    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message)


class ChannelClosedError(Exception):
    """Raised when sending on a closed channel."""

    def __init__(self, message: str = "send on closed channel"):
        super().__init__(message)


class ResponseWriteError(ConnectionError):
    """
    Raised when writing response bytes to the client fails.

    Once part of a body is on the wire the response cannot be restarted,
    so callers log this and give up on the response.
    """
