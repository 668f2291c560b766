"""
Unit tests for sessions and the in-memory session store.
"""

import logging

import pytest

from httpservice import RequestStateError
from httpservice.http.writer import ResponseRecorder
from httpservice.session import MemorySessionStore, Session, SessionOptions


def cookie_pair(set_cookie: str) -> str:
    """The "name=value" part of a Set-Cookie header."""
    return set_cookie.split(";")[0]


class TestSession:
    """Tests for Session start/save."""

    def test_new_session(self, make_request):
        store = MemorySessionStore(key="secret")
        request = make_request()

        session = Session(str(request.id), None, store).start(request)

        assert session.started
        assert session.is_new
        assert session.values == {}
        assert session.data.name == "http-session"

    def test_round_trip_through_cookie(self, make_request):
        store = MemorySessionStore(key="secret")
        first = make_request()
        session = Session(str(first.id), None, store).start(first)
        session.set("user", "ada")
        session.save(first)

        set_cookie = first.writer.headers.get("Set-Cookie")
        assert set_cookie.startswith("http-session=")
        assert "HttpOnly" in set_cookie
        assert "SameSite=Lax" in set_cookie

        second = make_request(headers={"Cookie": cookie_pair(set_cookie)})
        restored = Session(str(second.id), None, store).start(second)

        assert restored.is_new is False
        assert restored.get("user") == "ada"
        assert len(store) == 1

    def test_bad_signature_starts_new_session(self, make_request):
        store = MemorySessionStore(key="secret")
        first = make_request()
        session = Session(str(first.id), None, store).start(first)
        session.set("user", "ada")
        session.save(first)
        session_id = session.data.id

        forged = make_request(headers={"Cookie": f"http-session={session_id}.forged"})
        restored = Session(str(forged.id), None, store).start(forged)

        assert restored.is_new
        assert restored.get("user") is None
        assert restored.data.id != session_id

    def test_other_key_rejects_cookie(self, make_request):
        first = make_request()
        session = Session(str(first.id), None, MemorySessionStore(key="one")).start(first)
        session.save(first)
        cookie = cookie_pair(first.writer.headers.get("Set-Cookie"))

        second = make_request(headers={"Cookie": cookie})
        restored = Session(str(second.id), None, MemorySessionStore(key="two")).start(second)

        assert restored.is_new

    def test_custom_session_name(self, make_request):
        store = MemorySessionStore(key="secret")
        request = make_request().with_session_name("cart")

        session = Session(str(request.id), None, store).start(request)
        session.save(request)

        assert request.writer.headers.get("Set-Cookie").startswith("cart=")

    def test_start_fixes_session_name(self, make_request):
        request = make_request()
        Session(str(request.id), None, MemorySessionStore()).start(request)

        with pytest.raises(RequestStateError):
            request.with_session_name("cart")

    def test_zero_max_age_deletes(self, make_request):
        store = MemorySessionStore(key="secret")
        first = make_request()
        session = Session(str(first.id), None, store).start(first)
        session.save(first)
        cookie = cookie_pair(first.writer.headers.get("Set-Cookie"))

        second = make_request(headers={"Cookie": cookie})
        session = Session(str(second.id), SessionOptions(max_age=0), store).start(second)
        session.save(second)

        set_cookie = second.writer.headers.get("Set-Cookie")
        assert "Max-Age=0" in set_cookie
        assert len(store) == 0

    def test_options_apply_to_cookie(self, make_request):
        store = MemorySessionStore(key="secret")
        request = make_request()
        options = SessionOptions(path="/app", domain="example.com", secure=True, same_site="Strict")

        Session(str(request.id), options, store).start(request).save(request)

        set_cookie = request.writer.headers.get("Set-Cookie")
        assert "Path=/app" in set_cookie
        assert "Domain=example.com" in set_cookie
        assert "Secure" in set_cookie
        assert "SameSite=Strict" in set_cookie

    def test_values_before_start(self, make_request):
        session = Session("id", None, MemorySessionStore())

        assert not session.started
        with pytest.raises(RequestStateError):
            session.values

    def test_save_before_start(self, make_request):
        request = make_request()

        with pytest.raises(RequestStateError):
            Session(str(request.id), None, MemorySessionStore()).save(request)

    def test_store_errors_propagate(self, make_request):
        class BrokenStore:
            def get(self, http_request, name):
                raise RuntimeError("store down")

            def save(self, http_request, writer, session):
                raise RuntimeError("store down")

        request = make_request()

        with pytest.raises(RuntimeError):
            Session(str(request.id), None, BrokenStore()).start(request)

    def test_save_after_head_warns(self, make_request, caplog):
        request = make_request(writer=ResponseRecorder())
        session = Session(str(request.id), None, MemorySessionStore()).start(request)
        request.writer.write_header(200)

        with caplog.at_level(logging.WARNING):
            session.save(request)

        assert "cookie not delivered" in caplog.text
