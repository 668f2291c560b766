"""
Built-in handlers the Service registers on its own.

    GET /health    → 200 "OK"            (disable_health_handler)
    OPTIONS *      → 200, empty body     (disable_options_handler)
    anything else  → 501 Not Implemented (registered on "/")

Load balancers and orchestrators only care about the status code of
/health, so the body stays a fixed two bytes.
"""

from .request import Request
from .response import not_implemented


def health_handler(request: Request) -> None:
    """Liveness probe: the process is up and serving."""
    (request.response_builder()
        .with_header("Content-Type", "text/plain; charset=utf-8")
        .with_header("Content-Length", "2")
        .with_header("Cache-Control", "no-store")
        .with_status(200)
        .with_body(b"OK")
        .send())


def options_handler(request: Request) -> None:
    """Answer "OPTIONS *" with an empty 200."""
    request.writer.set_header("Content-Length", "0")
    request.writer.write_header(200)


def not_implemented_handler(request: Request) -> None:
    """Catch-all for paths nothing else claimed."""
    not_implemented(request)


__all__ = ["health_handler", "options_handler", "not_implemented_handler"]
