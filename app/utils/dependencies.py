from fastapi import Depends, Request
from sqlalchemy.orm import Session as DbSession

from app.database import get_db
from app.middleware.security import SESSION_COOKIE_NAME, CsrfGuard
from app.services.auth_service import AuthService
from app.services.identity_backend import IdentityBackend
from app.services.review_service import ReviewEditor
from app.services.session_store import Session, SessionStore
from app.services.tmdb_service import TMDBClient
from app.services.watchlist_service import WatchlistService
from app.utils.audit import AuditSink
from app.utils.errors import Unauthenticated


# Collaborators live on app.state so tests can swap them
def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_audit_sink(request: Request) -> AuditSink:
    return request.app.state.audit_sink


def get_csrf_guard(request: Request) -> CsrfGuard:
    return request.app.state.csrf_guard


def get_identity_backend(request: Request) -> IdentityBackend:
    return request.app.state.identity_backend


def get_tmdb_client(request: Request) -> TMDBClient:
    return request.app.state.metadata_client


def get_session_id(request: Request) -> str:
    return request.cookies.get(SESSION_COOKIE_NAME)


# Authentication wall: the request must carry a live session
def get_current_session(
    session_id: str = Depends(get_session_id),
    store: SessionStore = Depends(get_session_store),
) -> Session:
    session = store.get(session_id)
    if session is None:
        raise Unauthenticated()
    return session


def get_current_user_id(session: Session = Depends(get_current_session)) -> str:
    return session.user_id


def get_auth_service(
    db: DbSession = Depends(get_db),
    identity: IdentityBackend = Depends(get_identity_backend),
    store: SessionStore = Depends(get_session_store),
    csrf: CsrfGuard = Depends(get_csrf_guard),
    audit: AuditSink = Depends(get_audit_sink),
) -> AuthService:
    return AuthService(db, identity, store, csrf, audit)


def get_review_editor(
    db: DbSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
) -> ReviewEditor:
    return ReviewEditor(db, audit)


def get_watchlist_service(
    db: DbSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
    reviews: ReviewEditor = Depends(get_review_editor),
) -> WatchlistService:
    return WatchlistService(db, audit, reviews)
