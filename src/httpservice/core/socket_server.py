"""
=============================================================================
LISTENING SOCKET
=============================================================================

SocketServer owns the listening socket and nothing else: it binds, accepts,
wraps each client in a Connection, and hands it to a callback. Parsing,
dispatch and response writing all happen in the callback (Service).

    socket() ─► setsockopt() ─► bind() ─► listen() ─► accept() loop
                                                        │
                                        wrap TLS? ──────┤
                                                        ▼
                                            connection_handler(conn)

accept() runs with a 1 second timeout so the loop notices shutdown()
promptly without needing a wake-up pipe.

=============================================================================
TLS
=============================================================================

With an ssl.SSLContext the accepted socket is wrapped with
do_handshake_on_connect=False. The handshake itself happens on the worker
thread (Connection.handshake), so one slow or hostile client cannot stall
the accept loop.

=============================================================================
SIGNALS
=============================================================================

SIGTERM/SIGINT trigger shutdown() when the server runs on the main thread.
Python only allows installing signal handlers there; on any other thread
(tests, embedding) the server skips them and relies on shutdown() calls.

=============================================================================
"""

import socket
import signal
import ssl
import logging
import threading
from typing import Callable, Optional, Tuple

from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    TCP accept loop.

    Args:
        host: Interface to bind.
        port: Port to bind; 0 picks a free port (see address once ready).
        backlog: listen() backlog.
        ssl_context: Server-side TLS context, or None for plain TCP.
        connection_options: Extra keyword arguments for every Connection
                            (buffer_size, timeout, keep_alive_timeout,
                            max_request_size).
        install_signal_handlers: Catch SIGTERM/SIGINT when on the main thread.

    Usage:
        server = SocketServer("127.0.0.1", 8080)
        server.start(handle_connection)   # blocks until shutdown()
    """

    def __init__(
        self,
        host: str,
        port: int,
        backlog: int = 128,
        ssl_context: Optional[ssl.SSLContext] = None,
        connection_options: Optional[dict] = None,
        install_signal_handlers: bool = True,
    ):
        self.host = host
        self.port = port
        self.backlog = backlog
        self.ssl_context = ssl_context
        self.connection_options = connection_options or {}
        self.install_signal_handlers = install_signal_handlers

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._ready = threading.Event()
        self._stopped = threading.Event()
        self._original_handlers: dict = {}
        self._bound_address: Optional[Tuple[str, int]] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port) once listening, else the configured pair."""
        return self._bound_address or (self.host, self.port)

    def _create_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(1.0)
        return sock

    def _setup_signals(self):
        if not self.install_signal_handlers:
            return
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread; skipping signal handlers")
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(
        self,
        connection_handler: Callable[[Connection], None],
        on_ready: Optional[Callable[[], None]] = None,
    ):
        """
        Bind, listen and accept until shutdown() is called.

        on_ready runs once the socket is listening, on this thread.

        Raises:
            OSError: If the address cannot be bound.
        """
        self._stopped.clear()
        self._socket = self._create_socket()
        try:
            self._socket.bind((self.host, self.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.host}:{self.port}: {e}")
            self._socket.close()
            self._socket = None
            self._stopped.set()
            raise

        self._socket.listen(self.backlog)
        self._bound_address = self._socket.getsockname()[:2]
        self._running = True
        self._setup_signals()

        scheme = "https" if self.ssl_context else "http"
        logger.info(f"Server listening on {scheme}://{self._bound_address[0]}:{self._bound_address[1]}")
        self._ready.set()

        try:
            if on_ready is not None:
                on_ready()
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            if self.ssl_context is not None:
                try:
                    client_socket = self.ssl_context.wrap_socket(
                        client_socket,
                        server_side=True,
                        do_handshake_on_connect=False,
                    )
                except (ssl.SSLError, OSError) as e:
                    logger.warning(f"TLS wrap failed for {client_address[0]}: {e}")
                    client_socket.close()
                    continue

            conn = Connection(
                socket=client_socket,
                address=client_address[:2],
                **self.connection_options,
            )
            connection_handler(conn)

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening. Returns False on timeout."""
        return self._ready.wait(timeout)

    def shutdown(self):
        """Stop accepting. Idempotent and safe from any thread."""
        if not self._running:
            return
        logger.info("Shutting down socket server...")
        self._running = False

    def _cleanup(self):
        self._running = False
        self._restore_signals()
        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        self._ready.clear()
        self._stopped.set()
        logger.info("Socket server stopped")

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Block until the accept loop has exited. Returns False on timeout."""
        return self._stopped.wait(timeout)
