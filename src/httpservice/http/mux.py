"""
=============================================================================
REQUEST MULTIPLEXER
=============================================================================

Maps request paths to handlers with the two pattern kinds the service
needs and nothing more:

    ┌──────────────┬──────────────────────────────────────────────────────┐
    │  Pattern     │  Matches                                             │
    ├──────────────┼──────────────────────────────────────────────────────┤
    │  /health     │  exactly /health                                     │
    │  /files/     │  /files/ and everything below it (subtree)           │
    │  /           │  everything (the service registers its 501 here)     │
    └──────────────┴──────────────────────────────────────────────────────┘

When several patterns match, the longest one wins, so "/" is only ever
the fallback:

    /health        → /health handler
    /files/a/b.txt → /files/ handler
    /anything      → / handler

Handlers are plain callables taking a Request and returning nothing.
They respond by writing through request.writer.

=============================================================================
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


Handler = Callable[[Any], None]


@dataclass(frozen=True)
class Route:
    pattern: str
    handler: Handler

    @property
    def is_subtree(self) -> bool:
        return self.pattern.endswith("/")

    def matches(self, path: str) -> bool:
        if self.is_subtree:
            return path.startswith(self.pattern)
        return path == self.pattern


class ServeMux:
    """
    Thread-safe pattern → handler table.

    Handlers may be registered while the service is serving.

    Example:
        mux = ServeMux()
        mux.handle("/health", health)

        @mux.route("/api/")
        def api(request):
            ...
    """

    def __init__(self):
        self._routes: Dict[str, Route] = {}
        self._lock = threading.RLock()

    def handle(self, pattern: str, handler: Handler) -> None:
        """
        Register handler for pattern, replacing any previous registration.

        Raises:
            ValueError: If the pattern does not start with "/".
        """
        if not pattern or not pattern.startswith("/"):
            raise ValueError(f"Invalid pattern {pattern!r}: must start with '/'")
        if not callable(handler):
            raise TypeError(f"Handler for {pattern!r} is not callable")
        with self._lock:
            if pattern in self._routes:
                logger.debug(f"Replacing handler for {pattern}")
            self._routes[pattern] = Route(pattern, handler)

    def route(self, pattern: str) -> Callable[[Handler], Handler]:
        """Decorator form of handle()."""
        def decorator(handler: Handler) -> Handler:
            self.handle(pattern, handler)
            return handler
        return decorator

    def remove(self, pattern: str) -> bool:
        """Unregister pattern. Returns False if it was not registered."""
        with self._lock:
            return self._routes.pop(pattern, None) is not None

    def match(self, path: str) -> Optional[Route]:
        """The longest registered pattern matching path, or None."""
        with self._lock:
            best: Optional[Route] = None
            for route in self._routes.values():
                if route.matches(path) and (best is None or len(route.pattern) > len(best.pattern)):
                    best = route
            return best

    def handler_for(self, path: str) -> Optional[Handler]:
        route = self.match(path)
        return route.handler if route else None

    @property
    def patterns(self) -> List[str]:
        with self._lock:
            return sorted(self._routes)

    def __contains__(self, pattern: str) -> bool:
        with self._lock:
            return pattern in self._routes

    def __len__(self) -> int:
        with self._lock:
            return len(self._routes)
