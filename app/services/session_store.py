"""
Session Store
=============
Server-side sessions keyed by an opaque session id.

Features:
- TTL per entry, taken from the identity backend's access-token expiry
- Lazy expiry on read plus a periodic sweep (see background_jobs)
- Thread-safe: routes run on FastAPI's worker threadpool

Usage:
    store = SessionStore()
    store.save(session)
    session = store.get(session_id)   # None once expired
    store.delete(session_id)

A single logical store is assumed. For several server instances back this
with a shared cache (e.g. Redis) exposing the same methods.
"""
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Optional
import logging
import secrets
import threading

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from app.utils.audit import redact

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthContext(BaseModel):
    """
    Identity-backend credentials for one session.

    Tokens are SecretStr so repr()/logging never reveals them; call
    get_secret_value() only where the backend needs the raw token.
    """
    access_token: SecretStr
    refresh_token: Optional[SecretStr] = None
    expires_at: datetime

    model_config = ConfigDict(frozen=True)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at


class Session(BaseModel):
    session_id: str
    user_id: str
    email: str
    profile_image_ref: Optional[str] = None
    auth: AuthContext
    csrf_token: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)

    @property
    def expires_at(self) -> datetime:
        return self.auth.expires_at

    def __repr__(self) -> str:
        return f"Session(session_id={redact(self.session_id)!r}, user_id={self.user_id!r})"

    __str__ = __repr__


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class SessionStore:
    """In-memory session store with TTL and LRU-bounded size."""

    def __init__(self, max_size: int = 100_000):
        self._sessions: "OrderedDict[str, Session]" = OrderedDict()
        self._max_size = max_size
        self._lock = threading.Lock()

    def save(self, session: Session) -> Session:
        with self._lock:
            self._sessions[session.session_id] = session
            self._sessions.move_to_end(session.session_id)

            # Evict oldest if over max_size
            if len(self._sessions) > self._max_size:
                oldest_id, _ = self._sessions.popitem(last=False)
                logger.warning(f"Evicted session {redact(oldest_id)} (store full)")
        return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        """Return the live session, or None if absent or expired."""
        if not session_id:
            return None
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.auth.is_expired():
                del self._sessions[session_id]
                logger.debug(f"Session {redact(session_id)} expired")
                return None
            self._sessions.move_to_end(session_id)
            return session

    def update(self, session_id: str, **changes: Any) -> Optional[Session]:
        """Replace fields on a live session; returns None if it is gone."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.auth.is_expired():
                self._sessions.pop(session_id, None)
                return None
            updated = session.model_copy(update=changes)
            self._sessions[session_id] = updated
            return updated

    def delete(self, session_id: Optional[str]) -> bool:
        if not session_id:
            return False
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def delete_for_user(self, user_id: str) -> int:
        """Drop every session belonging to a user (account deletion)."""
        with self._lock:
            doomed = [sid for sid, s in self._sessions.items() if s.user_id == user_id]
            for sid in doomed:
                del self._sessions[sid]
        return len(doomed)

    def purge_expired(self) -> int:
        now = _utcnow()
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.auth.is_expired(now)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info(f"Purged {len(expired)} expired sessions")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def get_stats(self) -> dict:
        return {
            'size': len(self._sessions),
            'max_size': self._max_size,
        }
