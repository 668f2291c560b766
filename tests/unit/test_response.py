"""
Unit tests for response data functions, the response builder and error helpers.
"""

import logging
import math

import pytest

from httpservice.channel import Channel
from httpservice.context import background, with_cancel
from httpservice.http.writer import ResponseRecorder
from httpservice.response import (
    ResponseBuilder,
    binary_data,
    binary_stream_data,
    error_response,
    json_data,
    bad_request,
    not_found,
    not_implemented,
    service_unavailable,
    string_data,
)


class CancellingRecorder(ResponseRecorder):
    """Cancels a context right after writing a given chunk."""

    def __init__(self, cancel, after: bytes):
        super().__init__()
        self.cancel = cancel
        self.after = after

    def _send_body(self, data: bytes) -> None:
        super()._send_body(data)
        if data == self.after:
            self.cancel()


class FailingRecorder(ResponseRecorder):
    """Fails when asked to write a given chunk."""

    def __init__(self, fail_on: bytes):
        super().__init__()
        self.fail_on = fail_on

    def _send_body(self, data: bytes) -> None:
        if data == self.fail_on:
            raise IOError("client went away")
        super()._send_body(data)


class TestDataFunctions:
    """Tests for the ResponseDataFunc constructors."""

    def test_binary_data_returns_same_bytes_every_call(self):
        produce = binary_data(b"\x00\x01payload")

        assert produce() == b"\x00\x01payload"
        assert produce() == b"\x00\x01payload"

    def test_string_data_is_utf8(self):
        assert string_data("héllo")() == "héllo".encode("utf-8")

    def test_json_data_is_compact(self):
        assert json_data({"a": [1, 2], "b": None})() == b'{"a":[1,2],"b":null}'

    def test_json_data_unserializable_raises(self):
        with pytest.raises(TypeError):
            json_data({"obj": object()})()

    def test_json_data_rejects_nan(self):
        with pytest.raises(ValueError):
            json_data(math.nan)()


class TestBinaryStreamData:
    """Tests for streaming a channel into the writer."""

    def test_writes_chunks_in_order(self, make_request):
        request = make_request()
        ch = Channel()
        for chunk in (b"c1", b"c2", b"c3"):
            ch.send(chunk)
        ch.close()

        assert binary_stream_data(request.context, request, ch)() == b""
        assert request.writer.chunks == [b"c1", b"c2", b"c3"]

    def test_cancel_stops_before_next_chunk(self, make_request):
        ctx, cancel = with_cancel(background())
        writer = CancellingRecorder(cancel, after=b"c1")
        request = make_request(ctx=ctx, writer=writer)
        ch = Channel()
        ch.send(b"c1")
        ch.send(b"c2")

        assert binary_stream_data(ctx, request, ch)() == b""
        assert writer.chunks == [b"c1"]

    def test_write_failure_is_raised(self, make_request, caplog):
        writer = FailingRecorder(fail_on=b"c2")
        request = make_request(writer=writer)
        ch = Channel()
        for chunk in (b"c1", b"c2", b"c3"):
            ch.send(chunk)
        ch.close()

        with caplog.at_level(logging.ERROR):
            with pytest.raises(IOError):
                binary_stream_data(request.context, request, ch)()

        assert writer.chunks == [b"c1"]
        assert "error writing to stream" in caplog.text
        assert len(ch) == 1

    def test_already_cancelled_writes_nothing(self, make_request):
        ctx, cancel = with_cancel(background())
        cancel()
        request = make_request(ctx=ctx)
        ch = Channel()
        ch.send(b"c1")

        assert binary_stream_data(ctx, request, ch)() == b""
        assert request.writer.chunks == []


class TestResponseBuilder:
    """Tests for ResponseBuilder."""

    def test_send_plain_text(self, make_request):
        request = make_request()

        (request.response_builder()
            .with_header("Content-Type", "text/plain")
            .with_status(200)
            .with_body(b"hi")
            .send())

        recorder = request.writer
        assert recorder.code == 200
        assert recorder.sent_headers.get("Content-Type") == "text/plain"
        assert recorder.body == b"hi"

    def test_headers_after_status_do_not_apply(self, make_request):
        request = make_request()

        (request.response_builder()
            .with_status(201)
            .with_header("X-Late", "1")
            .send())

        assert request.writer.code == 201
        assert "X-Late" not in request.writer.sent_headers

    def test_send_without_body_writes_status_only(self, make_request):
        request = make_request()

        request.response_builder().send()

        assert request.writer.code == 200
        assert request.writer.body == b""

    def test_body_func_replaced_until_send(self, make_request):
        request = make_request()

        (request.response_builder()
            .with_body(b"first")
            .with_body_func(json_data({"ok": True}))
            .send())

        assert request.writer.body == b'{"ok":true}'

    def test_each_send_runs_producer_again(self, make_request):
        request = make_request()
        calls = []

        def produce() -> bytes:
            calls.append(1)
            return b"x"

        builder = request.response_builder().with_body_func(produce)
        builder.send()
        builder.send()

        assert len(calls) == 2
        assert request.writer.body == b"xx"

    def test_producer_failure_writes_nothing(self, make_request, caplog):
        request = make_request()
        builder = request.response_builder().with_body_func(json_data({"bad": object()}))

        with caplog.at_level(logging.ERROR):
            with pytest.raises(TypeError):
                builder.send()

        assert request.writer.headers_sent is False
        assert request.writer.body == b""
        assert "error getting response body" in caplog.text

    def test_writer_failure_is_raised(self, make_request, caplog):
        request = make_request(writer=FailingRecorder(fail_on=b"boom"))

        with caplog.at_level(logging.ERROR):
            with pytest.raises(IOError):
                request.response_builder().with_body(b"boom").send()

        assert "error writing response body" in caplog.text

    def test_builder_for_stream(self, make_request):
        request = make_request()
        ch = Channel()
        ch.send(b"part-1 ")
        ch.send(b"part-2")
        ch.close()

        (request.response_builder()
            .with_header("Content-Type", "application/octet-stream")
            .with_body_func(binary_stream_data(request.context, request, ch))
            .send())

        assert request.writer.code == 200
        assert request.writer.body == b"part-1 part-2"


class TestErrorResponses:
    """Tests for error_response and the status helpers."""

    def test_error_response_default_message(self, make_request):
        request = make_request()

        error_response(request, 404)

        recorder = request.writer
        assert recorder.code == 404
        assert recorder.body == b"Not Found\n"
        assert recorder.sent_headers.get("Content-Type") == "text/plain; charset=utf-8"
        assert recorder.sent_headers.get("X-Content-Type-Options") == "nosniff"

    def test_error_response_drops_content_length(self, make_request):
        request = make_request()
        request.writer.set_header("Content-Length", "100")

        error_response(request, 400, "bad input")

        assert "Content-Length" not in request.writer.sent_headers
        assert request.writer.body == b"bad input\n"

    def test_error_after_head_only_writes_body(self, make_request, caplog):
        request = make_request()
        request.writer.write_header(200)

        with caplog.at_level(logging.WARNING):
            error_response(request, 500)

        assert request.writer.code == 200
        assert request.writer.body == b"Internal Server Error\n"
        assert "after status 200" in caplog.text

    @pytest.mark.parametrize("helper, status", [
        (bad_request, 400),
        (not_found, 404),
        (not_implemented, 501),
        (service_unavailable, 503),
    ])
    def test_helpers(self, make_request, helper, status):
        request = make_request()

        helper(request)

        assert request.writer.code == status
        assert request.writer.body.endswith(b"\n")

    def test_helper_custom_message(self, make_request):
        request = make_request()

        not_found(request, "no such item")

        assert request.writer.body == b"no such item\n"

    def test_helper_name(self):
        assert not_implemented.__name__ == "not_implemented"
