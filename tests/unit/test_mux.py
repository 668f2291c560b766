"""
Unit tests for the request multiplexer.
"""

import pytest

from httpservice.http.mux import Route, ServeMux


def handler_a(request):
    pass


def handler_b(request):
    pass


class TestRoute:
    """Tests for Route matching."""

    def test_exact_pattern(self):
        route = Route("/health", handler_a)

        assert route.matches("/health")
        assert not route.matches("/health/")
        assert not route.matches("/healthz")

    def test_subtree_pattern(self):
        route = Route("/files/", handler_a)

        assert route.is_subtree
        assert route.matches("/files/")
        assert route.matches("/files/a/b.txt")
        assert not route.matches("/files")


class TestServeMux:
    """Tests for ServeMux."""

    def test_handle_and_lookup(self):
        mux = ServeMux()
        mux.handle("/health", handler_a)

        assert mux.handler_for("/health") is handler_a
        assert mux.handler_for("/other") is None
        assert "/health" in mux
        assert len(mux) == 1

    def test_longest_pattern_wins(self):
        mux = ServeMux()
        mux.handle("/", handler_a)
        mux.handle("/api/", handler_b)

        assert mux.handler_for("/api/items") is handler_b
        assert mux.handler_for("/apix") is handler_a
        assert mux.match("/anything").pattern == "/"

    def test_exact_beats_shorter_subtree(self):
        mux = ServeMux()
        mux.handle("/api/", handler_a)
        mux.handle("/api/health", handler_b)

        assert mux.handler_for("/api/health") is handler_b
        assert mux.handler_for("/api/other") is handler_a

    def test_reregister_replaces(self):
        mux = ServeMux()
        mux.handle("/x", handler_a)
        mux.handle("/x", handler_b)

        assert mux.handler_for("/x") is handler_b
        assert len(mux) == 1

    def test_route_decorator(self):
        mux = ServeMux()

        @mux.route("/hello")
        def hello(request):
            pass

        assert mux.handler_for("/hello") is hello

    def test_remove(self):
        mux = ServeMux()
        mux.handle("/x", handler_a)

        assert mux.remove("/x") is True
        assert mux.remove("/x") is False
        assert mux.handler_for("/x") is None

    def test_patterns_sorted(self):
        mux = ServeMux()
        mux.handle("/b", handler_a)
        mux.handle("/a", handler_a)

        assert mux.patterns == ["/a", "/b"]

    @pytest.mark.parametrize("pattern", ["", "health", "*"])
    def test_invalid_pattern(self, pattern):
        with pytest.raises(ValueError):
            ServeMux().handle(pattern, handler_a)

    def test_handler_must_be_callable(self):
        with pytest.raises(TypeError):
            ServeMux().handle("/x", "not a function")
