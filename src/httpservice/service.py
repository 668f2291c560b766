"""
=============================================================================
SERVICE
=============================================================================

Service ties the pieces together and owns the lifecycle:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                            Service                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   SocketServer ── accept ──► ThreadPool ──► _serve_connection()     │
    │                                                  │                  │
    │                          read_request ◄──────────┤ keep-alive loop  │
    │                          RequestParser ◄─────────┤                  │
    │                                                  ▼                  │
    │        lifecycle ctx ──► request ctx ──► Request(ctx, http, writer) │
    │        (stop cancels)    (timeout)               │                  │
    │                                                  ▼                  │
    │                                   ServeMux ──► handler(request)     │
    │                                                  │                  │
    │                                   writer.finish(), ctx.cancel()     │
    │                                   access log line                   │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE
=============================================================================

    Service(config)   validate config, load TLS material (fail fast)
         │
    start()           blocks; ServiceAlreadyStartedError if running
         │
    stop()            cancels every in-flight request context, stops
                      accepting, aborts open connections;
                      ServiceNotRunningError if not running

=============================================================================
FAILURES INSIDE A REQUEST
=============================================================================

    ┌──────────────────────────────────┬───────────────────────────────────┐
    │  What happened                   │  What the client sees             │
    ├──────────────────────────────────┼───────────────────────────────────┤
    │  Handler raised, nothing sent    │  500 Internal Server Error        │
    │  Handler raised after the status │  connection closed mid-response   │
    │  Client went away                │  (nothing; context cancelled)     │
    │  Request unparseable / too big   │  400 / 413 / 405 / 505, close     │
    │  No request within timeout       │  408, close                       │
    │  Worker queue full               │  503, close                       │
    └──────────────────────────────────┴───────────────────────────────────┘

=============================================================================
"""

import logging
import ssl
import threading
import time
from datetime import datetime, timezone
from typing import Optional, Set

from .config import ServiceConfig
from .context import Context, background, with_cancel, with_timeout
from .core.connection import Connection
from .core.socket_server import SocketServer
from .core.thread_pool import ThreadPool, Worker
from .errors import (
    ResponseWriteError,
    ServiceAlreadyStartedError,
    ServiceNotRunningError,
    TLSConfigError,
)
from .handlers import health_handler, not_implemented_handler, options_handler
from .http.mux import Handler, ServeMux
from .http.request import HTTPParseError, HTTPRequest, RequestParser
from .http.status_codes import HTTPStatus, reason_phrase
from .http.writer import SocketResponseWriter
from .log import RequestLog, request_logger
from .request import Request
from .response import bad_request, internal_server_error
from .session import MemorySessionStore, Session, SessionOptions, SessionStore


logger = logging.getLogger(__name__)


class Service:
    """
    HTTP service with a managed lifecycle.

    Args:
        config: Service configuration (defaults when None).
        session_store: Backing store for sessions. Defaults to a
                       MemorySessionStore keyed with config.session_key.
        install_signal_handlers: Stop on SIGTERM/SIGINT when start() runs
                                 on the main thread.

    Raises:
        ValueError: If the configuration is invalid.
        TLSConfigError: If TLS is required and the cert or key is unusable.

    Example:
        service = Service(ServiceConfig(port=8080))

        @service.route("/hello")
        def hello(request):
            request.response_builder() \\
                .with_header("Content-Type", "text/plain") \\
                .with_status(200) \\
                .with_body(b"hi") \\
                .send()

        service.start()   # blocks until service.stop() or Ctrl+C
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        session_store: Optional[SessionStore] = None,
        install_signal_handlers: bool = True,
    ):
        self.config = config or ServiceConfig()
        self.config.validate()

        self.ssl_context = self._create_ssl_context() if self.config.require_tls else None
        self.session_store = session_store or MemorySessionStore(self.config.session_key)
        self.mux = ServeMux()
        self.install_signal_handlers = install_signal_handlers

        self._parser = RequestParser(max_request_size=self.config.max_request_size)
        self._lock = threading.Lock()
        self._running = False
        self._ctx: Optional[Context] = None
        self._socket_server: Optional[SocketServer] = None
        self._thread_pool: Optional[ThreadPool] = None
        self._connections: Set[Connection] = set()
        self._connections_lock = threading.Lock()
        self._ready = threading.Event()
        self._stopped = threading.Event()
        self._stopped.set()

    # =========================================================================
    # TLS
    # =========================================================================

    def _create_ssl_context(self) -> ssl.SSLContext:
        cert_file, key_file = self.config.cert_file, self.config.key_file
        if not cert_file or not key_file:
            raise TLSConfigError("TLS is required but cert_file or key_file is not set")

        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        try:
            context.load_cert_chain(certfile=cert_file, keyfile=key_file)
        except (OSError, ssl.SSLError) as e:
            raise TLSConfigError(f"Cannot load TLS certificate {cert_file!r} / key {key_file!r}: {e}") from e
        return context

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def context(self) -> Optional[Context]:
        """Lifecycle context while running; cancelled by stop()."""
        return self._ctx

    @property
    def address(self) -> tuple:
        """Bound (host, port) once listening, else the configured pair."""
        if self._socket_server is not None:
            return self._socket_server.address
        return (self.config.hostname, self.config.port)

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until start() is accepting connections."""
        return self._ready.wait(timeout)

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until start() has returned."""
        return self._stopped.wait(timeout)

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def handle(self, pattern: str, handler: Handler) -> None:
        """Register handler for pattern (exact, or subtree if it ends in "/")."""
        self.mux.handle(pattern, handler)

    def route(self, pattern: str):
        """Decorator form of handle()."""
        return self.mux.route(pattern)

    def session(self, request: Request, options: Optional[SessionOptions] = None) -> Session:
        """A Session for request backed by this service's store (not started)."""
        return Session(str(request.id), options, self.session_store)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """
        Serve until stop() is called. Blocks.

        Raises:
            ServiceAlreadyStartedError: If the service is already running.
            OSError: If the listen address cannot be bound.
        """
        with self._lock:
            if self._running:
                raise ServiceAlreadyStartedError()
            self._running = True
            self._stopped.clear()
            self._ready.clear()

            self._ctx, _ = with_cancel(background())
            self._register_builtin_handlers()

            self._socket_server = SocketServer(
                host=self.config.hostname,
                port=self.config.port,
                backlog=self.config.backlog,
                ssl_context=self.ssl_context,
                connection_options={
                    "buffer_size": self.config.buffer_size,
                    "timeout": self.config.request_timeout,
                    "keep_alive_timeout": self.config.keep_alive_timeout,
                    "max_request_size": self.config.max_request_size,
                },
                install_signal_handlers=self.install_signal_handlers,
            )
            self._thread_pool = ThreadPool(
                min_workers=self.config.min_workers,
                max_workers=self.config.max_workers,
                name_prefix="httpservice-worker",
            )

        logger.info(
            f"Starting {self.config.server_name} on {self.config.host_addr} "
            f"(tls={'on' if self.ssl_context else 'off'})"
        )
        self._thread_pool.start()
        try:
            self._socket_server.start(self._handle_connection, on_ready=self._ready.set)
        finally:
            self._teardown()

    def stop(self) -> None:
        """
        Stop serving.

        Cancels the lifecycle context (and with it every request context),
        stops the accept loop and aborts open connections. When called
        from outside the serving thread it waits briefly for the accept
        loop to exit.

        Raises:
            ServiceNotRunningError: If the service is not running.
        """
        with self._lock:
            if not self._running:
                raise ServiceNotRunningError()
            self._running = False
            ctx, server = self._ctx, self._socket_server

        logger.info("Stopping service...")
        if ctx is not None:
            ctx.cancel()
        if server is not None:
            server.shutdown()
        self._abort_connections()

        if server is not None and not isinstance(threading.current_thread(), Worker):
            server.wait_for_shutdown(timeout=5.0)

    def _teardown(self) -> None:
        with self._lock:
            self._running = False
            ctx, pool = self._ctx, self._thread_pool

        if ctx is not None:
            ctx.cancel()
        self._abort_connections()
        if pool is not None:
            pool.shutdown(wait=True, timeout=self.config.request_timeout)

        self._ready.clear()
        self._stopped.set()
        logger.info("Service stopped")

    def _register_builtin_handlers(self) -> None:
        if "/" not in self.mux:
            self.mux.handle("/", not_implemented_handler)
        if not self.config.disable_health_handler and "/health" not in self.mux:
            self.mux.handle("/health", health_handler)

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _handle_connection(self, conn: Connection) -> None:
        """Queue an accepted connection on the worker pool (accept thread)."""
        with self._connections_lock:
            self._connections.add(conn)

        submitted = self._thread_pool.submit(
            self._serve_connection,
            args=(conn,),
            timeout=self.config.request_timeout,
        )
        if not submitted:
            logger.warning(f"[{conn.id}] Worker queue full, rejecting connection")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            self._release(conn)

    def _serve_connection(self, conn: Connection) -> None:
        """Keep-alive loop for one connection (worker thread)."""
        try:
            try:
                conn.handshake()
            except (ssl.SSLError, OSError) as e:
                logger.warning(f"[{conn.id}] TLS handshake with {conn.client_ip} failed: {e}")
                return

            while self._ctx is not None and not self._ctx.is_done:
                try:
                    raw_request = conn.read_request()
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break
                except HTTPParseError as e:
                    self._send_error(conn, e.status_code, str(e))
                    break

                if raw_request is None:
                    break

                try:
                    http_request = self._parser.parse(raw_request, conn.address)
                except HTTPParseError as e:
                    logger.debug(f"[{conn.id}] Rejected request: {e}")
                    self._send_error(conn, e.status_code, str(e))
                    break

                if not self._serve_request(conn, http_request):
                    break
                conn.set_keep_alive()

        except OSError as e:
            logger.debug(f"[{conn.id}] Connection error: {e}")
        finally:
            self._release(conn)

    def _release(self, conn: Connection) -> None:
        with self._connections_lock:
            self._connections.discard(conn)
        conn.close()

    def _abort_connections(self) -> None:
        with self._connections_lock:
            connections = list(self._connections)
        for conn in connections:
            conn.abort()

    def _send_error(self, conn: Connection, status: int, message: str) -> None:
        """Plain-text error for failures before a Request exists; closes after."""
        writer = SocketResponseWriter(conn, HTTPRequest(method="GET", path="/"), self.config.server_name)
        body = f"{reason_phrase(status)}: {message}\n".encode("utf-8")
        writer.set_header("Content-Type", "text/plain; charset=utf-8")
        writer.set_header("Content-Length", str(len(body)))
        writer.set_header("Connection", "close")
        try:
            writer.write_header(status)
            writer.write(body)
            writer.finish()
        except ResponseWriteError as e:
            logger.debug(f"[{conn.id}] Could not send {status}: {e}")

    # =========================================================================
    # REQUESTS
    # =========================================================================

    def _serve_request(self, conn: Connection, http_request: HTTPRequest) -> bool:
        """
        Run one request through its handler.

        Returns:
            True if the connection may serve another request.
        """
        started = time.time()
        ctx, cancel = with_timeout(self._ctx, self.config.request_timeout)
        writer = SocketResponseWriter(
            conn,
            http_request,
            server_name=self.config.server_name,
            on_error=lambda e: cancel(),
        )

        keep_alive = self.config.keep_alive and http_request.is_keep_alive
        if keep_alive:
            writer.set_header("Connection", "keep-alive")
            writer.set_header("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
        else:
            writer.set_header("Connection", "close")

        request = Request(ctx, http_request, writer)
        log = request_logger(logger, request)

        try:
            self.dispatch(request)
            writer.finish()
        except ResponseWriteError as e:
            log.info(f"Client {conn.client_ip} went away: {e}")
        except Exception as e:
            log.exception(f"Handler error for {http_request.method} {http_request.path}: {e}")
            if writer.headers_sent:
                writer.must_close = True
            else:
                try:
                    internal_server_error(request)
                    writer.finish()
                except ResponseWriteError as write_error:
                    log.debug(f"Could not send 500: {write_error}")
        finally:
            cancel()

        self._log_access(request, writer, started)
        return keep_alive and not writer.should_close and not self._ctx.is_done

    def dispatch(self, request: Request) -> None:
        """
        Route request to its handler.

        "OPTIONS *" goes to the built-in options handler unless disabled;
        any other "*" target is a bad request. Everything else goes through
        the mux, falling back to 501 when nothing matches.
        """
        http_request = request.http_request
        if http_request.target == "*":
            if http_request.method == "OPTIONS" and not self.config.disable_options_handler:
                options_handler(request)
            else:
                bad_request(request)
            return

        handler = self.mux.handler_for(http_request.path) or not_implemented_handler
        handler(request)

    def _log_access(self, request: Request, writer: SocketResponseWriter, started: float) -> None:
        http_request = request.http_request
        query = http_request.target.partition("?")[2]
        RequestLog(
            request_id=str(request.id),
            method=http_request.method,
            path=http_request.path,
            query=query,
            client_ip=http_request.client_address[0],
            user_agent=http_request.user_agent,
            status_code=writer.status or 0,
            content_length=writer.bytes_written,
            duration_ms=(time.time() - started) * 1000,
            timestamp=datetime.now(timezone.utc).strftime("%d/%b/%Y:%H:%M:%S %z"),
        ).emit(self.config.log_format)
