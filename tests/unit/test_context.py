"""
Unit tests for cancellation contexts.
"""

import threading
import time

import pytest

from httpservice.context import Context, background, with_cancel, with_deadline, with_timeout
from httpservice.errors import ContextCancelledError, ContextDone, DeadlineExceededError


class TestCancellation:
    """Tests for explicit cancel()."""

    def test_background_is_never_done(self):
        assert background().is_done is False
        assert background().err() is None
        assert background().deadline is None

    def test_cancel_sets_error(self):
        ctx, cancel = with_cancel(background())
        assert ctx.is_done is False

        cancel()

        assert ctx.is_done is True
        assert isinstance(ctx.err(), ContextCancelledError)
        with pytest.raises(ContextDone):
            ctx.raise_if_done()

    def test_cancel_is_idempotent(self):
        ctx, cancel = with_cancel(background())
        cancel()
        first = ctx.err()
        cancel()

        assert ctx.err() is first

    def test_parent_cancel_propagates_to_children(self):
        parent, cancel_parent = with_cancel(background())
        child, _ = with_cancel(parent)
        grandchild, _ = with_cancel(child)

        cancel_parent()

        assert child.is_done and grandchild.is_done
        assert isinstance(grandchild.err(), ContextCancelledError)

    def test_child_cancel_does_not_touch_parent(self):
        parent, _ = with_cancel(background())
        child, cancel_child = with_cancel(parent)

        cancel_child()

        assert child.is_done
        assert not parent.is_done

    def test_child_of_done_parent_starts_done(self):
        parent, cancel = with_cancel(background())
        cancel()

        child, _ = with_cancel(parent)

        assert child.is_done

    def test_wait_wakes_on_cancel(self):
        ctx, cancel = with_cancel(background())
        threading.Timer(0.05, cancel).start()

        assert ctx.wait(timeout=2.0) is True


class TestCallbacks:
    """Tests for on_done() notification."""

    def test_callback_fires_once(self):
        ctx, cancel = with_cancel(background())
        calls = []
        ctx.on_done(lambda: calls.append(1))

        cancel()
        cancel()

        assert calls == [1]

    def test_callback_on_done_context_runs_immediately(self):
        ctx, cancel = with_cancel(background())
        cancel()
        calls = []

        ctx.on_done(lambda: calls.append(1))

        assert calls == [1]

    def test_unregister(self):
        ctx, cancel = with_cancel(background())
        calls = []
        unregister = ctx.on_done(lambda: calls.append(1))

        unregister()
        cancel()

        assert calls == []

    def test_failing_callback_does_not_block_others(self):
        ctx, cancel = with_cancel(background())
        calls = []

        def boom():
            raise RuntimeError("boom")

        ctx.on_done(boom)
        ctx.on_done(lambda: calls.append(1))
        cancel()

        assert calls == [1]


class TestDeadlines:
    """Tests for timeouts and deadlines."""

    def test_timeout_expires(self):
        ctx, _ = with_timeout(background(), 0.05)

        assert ctx.wait(timeout=2.0) is True
        assert isinstance(ctx.err(), DeadlineExceededError)

    def test_past_deadline_is_done_immediately(self):
        ctx, _ = with_deadline(background(), time.monotonic() - 1)

        assert ctx.is_done
        assert isinstance(ctx.err(), DeadlineExceededError)

    def test_child_inherits_earlier_parent_deadline(self):
        parent, _ = with_timeout(background(), 10)
        child, _ = with_timeout(parent, 60)

        assert child.deadline == parent.deadline

    def test_child_keeps_its_own_earlier_deadline(self):
        parent, _ = with_timeout(background(), 60)
        child, _ = with_timeout(parent, 1)

        assert child.deadline < parent.deadline

    def test_parent_deadline_error_reaches_child(self):
        parent, _ = with_timeout(background(), 0.05)
        child, _ = with_cancel(parent)

        assert child.wait(timeout=2.0)
        assert isinstance(child.err(), DeadlineExceededError)

    def test_cancel_before_deadline(self):
        ctx, cancel = with_timeout(background(), 60)
        cancel()

        assert isinstance(ctx.err(), ContextCancelledError)

    def test_remaining(self):
        ctx, cancel = with_timeout(background(), 60)

        assert 0 < ctx.remaining() <= 60
        assert Context().remaining() is None
        cancel()
