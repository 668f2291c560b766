"""
=============================================================================
SESSIONS
=============================================================================

A Session ties per-client state to a Request through a pluggable store.
The store decides where state lives and how the client is told about it
(usually a cookie named after request.session_name).

    session = Session(str(request.id), SessionOptions(), store)
    session.start(request)          ── store.get(http_request, name)
    session.values["user"] = "ada"
    session.save(request)           ── store.save(http_request, writer, data)
                                       └── Set-Cookie on the writer, so
                                           save() before the status line

=============================================================================
MEMORY STORE
=============================================================================

MemorySessionStore keeps session values in a dict guarded by a lock; only
a signed session id travels in the cookie:

    Set-Cookie: http-session=Zk3q…9w.Yb2c…; Path=/; HttpOnly; SameSite=Lax
                             ───────── ─────
                             id        HMAC-SHA256(key, id)

A cookie that is missing, malformed, badly signed or names an unknown id
yields a fresh session with is_new=True. State is lost on restart.

=============================================================================
"""

import base64
import hashlib
import hmac
import logging
import secrets
import threading
from dataclasses import dataclass, field, replace
from http.cookies import SimpleCookie
from typing import Any, Dict, Optional, Protocol, Union

from .errors import RequestStateError
from .http.request import HTTPRequest
from .http.writer import ResponseWriter


logger = logging.getLogger(__name__)


@dataclass
class SessionOptions:
    """
    Cookie attributes for a session.

    max_age: Seconds the cookie lives. None makes a browser-session
             cookie; 0 or less deletes the session on save().
    """
    path: str = "/"
    domain: Optional[str] = None
    max_age: Optional[int] = 86400 * 30
    secure: bool = False
    http_only: bool = True
    same_site: Optional[str] = "Lax"


@dataclass
class SessionData:
    """State fetched from a store for one session name."""
    name: str
    id: str
    values: Dict[str, Any] = field(default_factory=dict)
    options: SessionOptions = field(default_factory=SessionOptions)
    is_new: bool = True


class SessionStore(Protocol):
    """Where sessions live. Errors raised here reach the caller unchanged."""

    def get(self, http_request: HTTPRequest, name: str) -> SessionData:
        """Fetch the named session for this request, or create one."""
        ...

    def save(self, http_request: HTTPRequest, writer: ResponseWriter, session: SessionData) -> None:
        """Persist session and tell the client (e.g. Set-Cookie on writer)."""
        ...


class MemorySessionStore:
    """
    In-process SessionStore with HMAC-signed cookie ids.

    Args:
        key: Signing secret. None generates a random one.
        options: Default cookie attributes for new sessions.
    """

    def __init__(self, key: Optional[Union[str, bytes]] = None, options: Optional[SessionOptions] = None):
        if key is None:
            key = secrets.token_bytes(32)
        self._key = key.encode("utf-8") if isinstance(key, str) else key
        self.options = options or SessionOptions()
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, http_request: HTTPRequest, name: str) -> SessionData:
        session_id = self._verify(http_request.cookies.get(name, ""))
        if session_id is not None:
            with self._lock:
                values = self._sessions.get(session_id)
            if values is not None:
                return SessionData(
                    name=name,
                    id=session_id,
                    values=dict(values),
                    options=replace(self.options),
                    is_new=False,
                )
            logger.debug(f"Unknown session id for {name!r}; starting a new session")

        return SessionData(
            name=name,
            id=secrets.token_urlsafe(24),
            options=replace(self.options),
            is_new=True,
        )

    def save(self, http_request: HTTPRequest, writer: ResponseWriter, session: SessionData) -> None:
        if writer.headers_sent:
            logger.warning(f"Session {session.name!r} saved after the response head was sent; cookie not delivered")
        options = session.options
        if options.max_age is not None and options.max_age <= 0:
            with self._lock:
                self._sessions.pop(session.id, None)
            writer.headers.add("Set-Cookie", self._cookie(session.name, "", options, expire=True))
            return

        with self._lock:
            self._sessions[session.id] = dict(session.values)
        session.is_new = False
        writer.headers.add("Set-Cookie", self._cookie(session.name, self._sign(session.id), options))

    def _sign(self, session_id: str) -> str:
        digest = hmac.new(self._key, session_id.encode("utf-8"), hashlib.sha256).digest()
        signature = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        return f"{session_id}.{signature}"

    def _verify(self, cookie_value: str) -> Optional[str]:
        session_id, sep, _ = cookie_value.rpartition(".")
        if not sep or not session_id:
            return None
        if hmac.compare_digest(self._sign(session_id), cookie_value):
            return session_id
        logger.debug("Rejected session cookie with a bad signature")
        return None

    def _cookie(self, name: str, value: str, options: SessionOptions, expire: bool = False) -> str:
        jar = SimpleCookie()
        jar[name] = value
        morsel = jar[name]
        morsel["path"] = options.path
        if options.domain:
            morsel["domain"] = options.domain
        if expire:
            morsel["max-age"] = 0
            morsel["expires"] = "Thu, 01 Jan 1970 00:00:00 GMT"
        elif options.max_age is not None:
            morsel["max-age"] = options.max_age
        if options.secure:
            morsel["secure"] = True
        if options.http_only:
            morsel["httponly"] = True
        if options.same_site:
            morsel["samesite"] = options.same_site
        return morsel.OutputString()


class Session:
    """
    A session attached to one request.

    Args:
        id: Identifier for this attachment (the request id, typically).
        options: Cookie attributes applied to the fetched session; None
                 keeps the store's defaults.
        store: Backing SessionStore.
    """

    def __init__(self, id: str, options: Optional[SessionOptions], store: SessionStore):
        self.id = id
        self.options = options
        self.store = store
        self.data: Optional[SessionData] = None

    @property
    def started(self) -> bool:
        return self.data is not None

    @property
    def values(self) -> Dict[str, Any]:
        if self.data is None:
            raise RequestStateError("session not started")
        return self.data.values

    @property
    def is_new(self) -> bool:
        return self.data is None or self.data.is_new

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    def start(self, request) -> "Session":
        """
        Fetch (or create) the session named request.session_name.

        Returns:
            self, so calls chain.
        """
        data = self.store.get(request.http_request, request.claim_session_name())
        if self.options is not None:
            data.options = replace(self.options)
        self.data = data
        return self

    def save(self, request) -> None:
        """
        Persist through the store.

        Raises:
            RequestStateError: If start() was never called.
        """
        if self.data is None:
            raise RequestStateError("session saved before it was started")
        self.store.save(request.http_request, request.writer, self.data)
