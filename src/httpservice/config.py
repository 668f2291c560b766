"""
=============================================================================
SERVICE CONFIGURATION
=============================================================================

Every knob the service has, in one dataclass with defaults that run a
plain HTTP service on localhost:8080.

=============================================================================
SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │   Priority (highest to lowest):                                     │
    │                                                                     │
    │   1. Command-line arguments                                         │
    │      └── python -m httpservice --port 3000                          │
    │                                                                     │
    │   2. Environment variables                                          │
    │      └── HTTP_PORT=3000 python -m httpservice                       │
    │                                                                     │
    │   3. Default values (in this dataclass)                             │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TIMEOUTS
=============================================================================

request_timeout does double duty, as in most Go-style services:

    socket read timeout   ── how long a worker waits for request bytes
    request context       ── deadline handed to the handler; streaming
                             responses stop when it passes

keep_alive_timeout only governs the idle gap between requests on a
kept-alive connection.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class ServiceConfig:
    """
    Service configuration.

    Example:
        config = ServiceConfig(port=8443, require_tls=True,
                               cert_file="server.crt", key_file="server.key")
        service = Service(config)
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    hostname: str = "localhost"
    """Interface to bind. "0.0.0.0" for every interface."""

    port: int = 8080
    """Port to listen on. 0 asks the OS for a free one."""

    backlog: int = 128
    """listen() backlog."""

    buffer_size: int = 8192
    """recv() size in bytes."""

    request_timeout: float = 30.0
    """Seconds for reading a request and deadline of its context."""

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    require_tls: bool = False
    """Serve HTTPS only. cert_file and key_file are then mandatory."""

    cert_file: Optional[str] = None
    """PEM certificate chain."""

    key_file: Optional[str] = None
    """PEM private key."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """Allow several requests per connection."""

    keep_alive_timeout: float = 5.0
    """Idle seconds before a kept-alive connection is closed."""

    max_request_size: int = 10 * 1024 * 1024
    """Largest accepted request (headers plus body) in bytes."""

    disable_options_handler: bool = False
    """Do not answer "OPTIONS *" automatically."""

    disable_health_handler: bool = False
    """Do not register GET /health."""

    # ─────────────────────────────────────────────────────────────────────
    # SESSIONS
    # ─────────────────────────────────────────────────────────────────────

    session_key: Optional[str] = None
    """
    Secret used to sign session cookies. When unset a random key is
    generated at startup, so sessions do not survive a restart.
    """

    # ─────────────────────────────────────────────────────────────────────
    # WORKERS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    max_workers: int = 16

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING / IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """DEBUG, INFO, WARNING, ERROR or CRITICAL."""

    log_format: str = "text"
    """'text' for people, 'json' for log shippers."""

    server_name: str = "httpservice/1.0"
    """Value of the Server response header."""

    @property
    def host_addr(self) -> str:
        """The "hostname:port" listen address."""
        return f"{self.hostname}:{self.port}"

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """
        Build a configuration from HTTP_* environment variables.

        HTTP_HOSTNAME         hostname          (localhost)
        HTTP_PORT             port              (8080)
        HTTP_REQUIRE_TLS      require_tls       (false)
        HTTP_CERT_FILE        cert_file
        HTTP_KEY_FILE         key_file
        HTTP_REQUEST_TIMEOUT  request_timeout   (30)
        HTTP_SESSION_KEY      session_key
        HTTP_DISABLE_OPTIONS  disable_options_handler
        HTTP_DISABLE_HEALTH   disable_health_handler
        HTTP_WORKERS          max_workers       (16)
        HTTP_LOG_LEVEL        log_level         (INFO)
        HTTP_LOG_FORMAT       log_format        (text)

        Raises:
            ValueError: If a numeric variable does not parse.
        """
        defaults = cls()
        return cls(
            hostname=os.getenv("HTTP_HOSTNAME", defaults.hostname),
            port=int(os.getenv("HTTP_PORT", str(defaults.port))),
            require_tls=_env_bool("HTTP_REQUIRE_TLS", defaults.require_tls),
            cert_file=os.getenv("HTTP_CERT_FILE"),
            key_file=os.getenv("HTTP_KEY_FILE"),
            request_timeout=float(os.getenv("HTTP_REQUEST_TIMEOUT", str(defaults.request_timeout))),
            session_key=os.getenv("HTTP_SESSION_KEY"),
            disable_options_handler=_env_bool("HTTP_DISABLE_OPTIONS", False),
            disable_health_handler=_env_bool("HTTP_DISABLE_HEALTH", False),
            max_workers=int(os.getenv("HTTP_WORKERS", str(defaults.max_workers))),
            log_level=os.getenv("HTTP_LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("HTTP_LOG_FORMAT", defaults.log_format),
        )

    def validate(self) -> None:
        """
        Check values at startup rather than at first use.

        Raises:
            ValueError: On the first invalid value.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")

        if self.keep_alive_timeout <= 0:
            raise ValueError("keep_alive_timeout must be > 0")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"Invalid log_format: {self.log_format!r}. Must be 'text' or 'json'.")
