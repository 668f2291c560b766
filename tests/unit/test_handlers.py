"""
Unit tests for built-in handlers and command-line configuration.
"""

from httpservice.__main__ import build_config, build_parser
from httpservice.handlers import health_handler, not_implemented_handler, options_handler


class TestBuiltinHandlers:
    def test_health(self, make_request):
        request = make_request(path="/health")

        health_handler(request)

        recorder = request.writer
        assert recorder.code == 200
        assert recorder.body == b"OK"
        assert recorder.sent_headers.get("Cache-Control") == "no-store"

    def test_options(self, make_request):
        request = make_request(method="OPTIONS", path="*")

        options_handler(request)

        assert request.writer.code == 200
        assert request.writer.sent_headers.get("Content-Length") == "0"
        assert request.writer.body == b""

    def test_not_implemented(self, make_request):
        request = make_request(path="/unknown")

        not_implemented_handler(request)

        assert request.writer.code == 501


class TestCommandLine:
    """Tests for turning flags into a ServiceConfig."""

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("HTTP_PORT", "9000")
        monkeypatch.setenv("HTTP_HOSTNAME", "0.0.0.0")

        args = build_parser().parse_args(["--port", "9100", "--no-health", "-w", "2"])
        config = build_config(args)

        assert config.port == 9100
        assert config.hostname == "0.0.0.0"
        assert config.disable_health_handler is True
        assert config.max_workers == 2
        assert config.min_workers == 2

    def test_unset_flags_keep_environment(self, monkeypatch):
        monkeypatch.setenv("HTTP_REQUIRE_TLS", "yes")

        config = build_config(build_parser().parse_args([]))

        assert config.require_tls is True
        assert config.disable_options_handler is False
