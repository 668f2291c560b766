"""
=============================================================================
CHUNK CHANNELS
=============================================================================

A Channel hands byte chunks from a producer thread to the thread that owns
the response. A ChannelStream walks a channel on behalf of one request and
stops as soon as that request's context is done.

=============================================================================
PRODUCER / CONSUMER
=============================================================================

    producer thread                         request worker thread
    ───────────────                         ─────────────────────
    ch.send(b"c1") ──┐
    ch.send(b"c2") ──┤    ┌────────────┐
    ch.send(b"c3") ──┼──► │  deque     │ ──► ChannelStream ──► writer.write()
    ch.close()     ──┘    └────────────┘          │
                                                  └─ ctx.cancel() stops it

=============================================================================
SELECT SEMANTICS
=============================================================================

receive() sleeps on a condition variable until one of three things
happens, whichever is first:

    1. a chunk is available        → return (chunk, True)
    2. the channel is closed+empty → return (None, False)
    3. the context is done         → raise ContextDone

The context is checked BEFORE a buffered chunk is taken, so a cancelled
request never writes another chunk even if the producer is ahead.

=============================================================================
"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, Generic, Iterator, Optional, Tuple, TypeVar

from .context import Context
from .errors import ChannelClosedError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class Channel(Generic[T]):
    """
    Closable FIFO shared by one producer and one consumer.

    Args:
        maxsize: Buffer capacity. 0 means unbounded; otherwise send()
                 blocks while the buffer is full.
    """

    def __init__(self, maxsize: int = 0):
        self.maxsize = maxsize
        self._items: Deque[T] = deque()
        self._cond = threading.Condition()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def send(self, item: T, ctx: Optional[Context] = None) -> None:
        """
        Put an item on the channel, blocking while a bounded buffer is full.

        Raises:
            ChannelClosedError: If the channel is (or becomes) closed.
            ContextDone: If ctx finishes while waiting for space.
        """
        with self._cond:
            unregister = self._watch(ctx)
            try:
                while True:
                    if self._closed:
                        raise ChannelClosedError()
                    if ctx is not None:
                        ctx.raise_if_done()
                    if self.maxsize <= 0 or len(self._items) < self.maxsize:
                        break
                    self._cond.wait()

                self._items.append(item)
                self._cond.notify_all()
            finally:
                unregister()

    def receive(self, ctx: Optional[Context] = None) -> Tuple[Optional[T], bool]:
        """
        Take the next item.

        Returns:
            (item, True) for a delivered item, (None, False) once the
            channel is closed and drained.

        Raises:
            ContextDone: If ctx is done before an item is taken.
        """
        with self._cond:
            unregister = self._watch(ctx)
            try:
                while True:
                    if ctx is not None:
                        ctx.raise_if_done()
                    if self._items:
                        item = self._items.popleft()
                        self._cond.notify_all()
                        return item, True
                    if self._closed:
                        return None, False
                    self._cond.wait()
            finally:
                unregister()

    def close(self) -> None:
        """
        Close the channel. Buffered items can still be received.

        Closing twice is a no-op.
        """
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def _watch(self, ctx: Optional[Context]) -> Callable[[], None]:
        """Wake waiters on this channel when ctx finishes."""
        if ctx is None:
            return lambda: None

        def wake() -> None:
            with self._cond:
                self._cond.notify_all()

        return ctx.on_done(wake)


class ChannelStream(Generic[T]):
    """
    Cancellation-aware iterator over a Channel.

    Iteration ends normally when the channel closes and raises ContextDone
    when the bound context finishes. close() releases the stream; any
    further iteration ends immediately.

    Example:
        stream = ChannelStream(ch, request.context)
        try:
            stream.each(writer.write)
        finally:
            stream.close()
    """

    def __init__(self, channel: Channel[T], ctx: Context):
        self.channel = channel
        self.ctx = ctx
        self._closed = False
        self.received = 0

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        if self._closed:
            raise StopIteration
        item, ok = self.channel.receive(self.ctx)
        if not ok:
            raise StopIteration
        self.received += 1
        return item

    def each(self, fn: Callable[[T], object]) -> None:
        """
        Call fn for every item in arrival order.

        Stops at the first exception raised by fn and re-raises it.
        """
        for item in self:
            fn(item)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        logger.debug(f"Channel stream closed after {self.received} chunks")
