"""
=============================================================================
CANCELLATION CONTEXT
=============================================================================

A Context carries a cancellation signal (and optionally a deadline) down
through everything that works on behalf of one request.

=============================================================================
CONTEXT TREE
=============================================================================

Contexts form a tree. Cancelling a node cancels every node below it, but
never the nodes above it:

    background()                      ← never cancelled
        └── service lifecycle ctx     ← cancelled by Service.stop()
              ├── request ctx #1      ← deadline = request_timeout
              │     └── stream ctx    ← cancelled when handler gives up
              └── request ctx #2

    Service.stop()  ──► lifecycle.cancel()
                            ├──► request #1 cancelled
                            │       └──► stream cancelled
                            └──► request #2 cancelled

=============================================================================
HOW WAITERS ARE WOKEN
=============================================================================

Nothing polls. A blocked operation registers a callback with on_done();
cancel() (or the deadline timer) fires every callback once, and the
callback notifies whatever condition variable the waiter sleeps on:

    receiver thread                      canceller thread
    ───────────────                      ────────────────
    ctx.on_done(wake)                    ctx.cancel()
    cond.wait()  ◄───── notify_all ────── wake()
    ctx.raise_if_done() → ContextDone

=============================================================================
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

from .errors import ContextCancelledError, ContextDone, DeadlineExceededError


logger = logging.getLogger(__name__)


CancelFunc = Callable[[], None]


class Context:
    """
    Cancellation signal with an optional deadline.

    Use background(), with_cancel() or with_timeout() to create one rather
    than calling the constructor directly.

    Attributes:
        deadline: Monotonic timestamp after which the context expires,
                  or None if it has no deadline.
    """

    def __init__(self, parent: Optional["Context"] = None, deadline: Optional[float] = None):
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._err: Optional[ContextDone] = None
        self._callbacks: List[Callable[[], None]] = []
        self._timer: Optional[threading.Timer] = None
        self._parent = parent
        self._unregister_parent: Optional[Callable[[], None]] = None

        # A child never outlives its parent's deadline
        if parent is not None and parent.deadline is not None:
            if deadline is None or parent.deadline < deadline:
                deadline = parent.deadline
        self.deadline = deadline

        if parent is not None:
            self._unregister_parent = parent.on_done(self._parent_done)

        if deadline is not None and not self._done.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._finish(DeadlineExceededError())
            else:
                self._timer = threading.Timer(remaining, self._finish, args=(DeadlineExceededError(),))
                self._timer.daemon = True
                self._timer.start()

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def is_done(self) -> bool:
        """True once the context has been cancelled or has expired."""
        return self._done.is_set()

    def err(self) -> Optional[ContextDone]:
        """
        Why the context finished.

        Returns:
            None while the context is live, otherwise a ContextCancelledError
            or DeadlineExceededError instance.
        """
        with self._lock:
            return self._err

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the context is done. Returns False on timeout."""
        return self._done.wait(timeout)

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None if there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_done(self) -> None:
        """Raise the context error if the context is done."""
        err = self.err()
        if err is not None:
            raise err

    # =========================================================================
    # NOTIFICATION
    # =========================================================================

    def on_done(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback fired once when the context finishes.

        If the context is already done the callback runs immediately.

        Returns:
            A function that unregisters the callback.
        """
        with self._lock:
            if self._err is None:
                self._callbacks.append(callback)

                def unregister() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return unregister

        callback()
        return lambda: None

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    def cancel(self) -> None:
        """Cancel this context and all of its children. Idempotent."""
        self._finish(ContextCancelledError())

    def _parent_done(self) -> None:
        parent_err = self._parent.err() if self._parent is not None else None
        self._finish(parent_err or ContextCancelledError())

    def _finish(self, err: ContextDone) -> None:
        with self._lock:
            if self._err is not None:
                return
            self._err = err
            callbacks = self._callbacks
            self._callbacks = []
            timer = self._timer
            self._timer = None

        self._done.set()

        if timer is not None:
            timer.cancel()
        if self._unregister_parent is not None:
            self._unregister_parent()
            self._unregister_parent = None

        # Callbacks run outside the lock so they may touch this context
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("context done callback failed")

    def __repr__(self) -> str:
        state = "done" if self.is_done else "live"
        return f"<Context {state} deadline={self.deadline}>"


# =============================================================================
# CONSTRUCTORS
# =============================================================================

_BACKGROUND = Context()


def background() -> Context:
    """The root context. It is never cancelled and has no deadline."""
    return _BACKGROUND


def with_cancel(parent: Context) -> Tuple[Context, CancelFunc]:
    """
    Derive a cancellable child context.

    Returns:
        (ctx, cancel) where cancel() cancels ctx and its descendants.
    """
    ctx = Context(parent)
    return ctx, ctx.cancel


def with_deadline(parent: Context, deadline: float) -> Tuple[Context, CancelFunc]:
    """Derive a child that expires at the given time.monotonic() timestamp."""
    ctx = Context(parent, deadline=deadline)
    return ctx, ctx.cancel


def with_timeout(parent: Context, timeout: float) -> Tuple[Context, CancelFunc]:
    """Derive a child that expires after timeout seconds."""
    return with_deadline(parent, time.monotonic() + timeout)
