"""
=============================================================================
LOGGING
=============================================================================

Everything logs through the standard library, one logger per module
(logging.getLogger(__name__)), all under the "httpservice" namespace:

    httpservice                 ← setup_logging() configures this one
    ├── httpservice.service
    ├── httpservice.response
    ├── httpservice.core.*
    └── httpservice.access      ← one line per request (RequestLog)

=============================================================================
REQUEST CORRELATION
=============================================================================

Every Request has a uuid. request_logger() wraps a module logger in a
LoggerAdapter that stamps that id on each record, so all lines for one
request can be grepped together:

    text:  2026-10-19 12:00:00 [ERROR] httpservice.response: [3f2a…] error writing response body
    json:  {"time": "...", "level": "ERROR", "logger": "httpservice.response",
            "message": "error writing response body", "request_id": "3f2a…"}

=============================================================================
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional, Tuple


ROOT_LOGGER = "httpservice"

access_logger = logging.getLogger("httpservice.access")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            entry["request_id"] = request_id
        access = getattr(record, "access", None)
        if access:
            entry["access"] = access
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RequestLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with the request id and attaches it to the record."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        request_id = self.extra.get("request_id", "")
        extra = kwargs.setdefault("extra", {})
        extra.setdefault("request_id", request_id)
        return f"[{request_id}] {msg}", kwargs


def request_logger(logger: logging.Logger, request) -> RequestLoggerAdapter:
    """Logger adapter bound to one request's id."""
    return RequestLoggerAdapter(logger, {"request_id": str(request.id)})


def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Configure the "httpservice" logger hierarchy.

    Installs a single stream handler on the package logger (repeat calls
    replace it) and stops propagation so records are not printed twice
    when the application configures the root logger too.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger(ROOT_LOGGER)
    for existing in list(root.handlers):
        if getattr(existing, "_httpservice_handler", False):
            root.removeHandler(existing)
    handler._httpservice_handler = True
    root.addHandler(handler)
    root.setLevel(numeric_level)
    root.propagate = False
    return root


@dataclass
class RequestLog:
    """
    One access log entry.

    Fields:
        request_id:     Request uuid (correlates with handler log lines).
        method, path:   From the request line.
        query:          Raw query string, "" if none.
        client_ip:      Peer address.
        user_agent:     User-Agent header.
        status_code:    Status actually sent.
        content_length: Body bytes written.
        duration_ms:    Time from parse to finished response.
        timestamp:      When the response finished.
    """

    request_id: str
    method: str
    path: str
    query: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "method": self.method,
            "path": self.path,
            "query": self.query,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "status_code": self.status_code,
            "content_length": self.content_length,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        """Apache-style line."""
        target = f"{self.path}?{self.query}" if self.query else self.path
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {target}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )

    def emit(self, log_format: str = "text", logger: Optional[logging.Logger] = None) -> None:
        """Write this entry to the access logger."""
        logger = logger or access_logger
        extra = {"request_id": self.request_id}
        if log_format == "json":
            extra["access"] = self.to_dict()
            logger.info(f"{self.method} {self.path} {self.status_code}", extra=extra)
        else:
            logger.info(self.to_text(), extra=extra)
