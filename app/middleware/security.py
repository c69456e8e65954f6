"""
Security middleware for the watchlist API
Implements security headers and session-bound CSRF protection
"""
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match
import os
import secrets
from typing import Optional
import logging

from app.services.session_store import Session, SessionStore
from app.utils.audit import redact
from app.utils.errors import InvalidCsrfToken

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "watchlist_session")
CSRF_HEADER_NAME = os.getenv("CSRF_HEADER_NAME", "X-CSRF-Token")

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

# Route names that skip CSRF validation. This is the only place a route can
# opt out; every other mutating route is checked, including ones added later.
CSRF_EXEMPT_ROUTES = frozenset({
    "register",  # anonymous, no session to bind a token to
    "login",     # anonymous, no session to bind a token to
    "logout",
})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers (XSS, CSP, HSTS, etc.)"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        # XSS Protection
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"

        # HSTS
        if os.getenv("ENVIRONMENT") == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        # Content Security Policy - relaxed for Swagger UI assets
        csp_directives = [
            "default-src 'self'",
            "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
            "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
            "img-src 'self' https://image.tmdb.org https://fastapi.tiangolo.com data:",
            "connect-src 'self'",
        ]
        response.headers["Content-Security-Policy"] = "; ".join(csp_directives)

        # Additional headers
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

        return response


class CsrfGuard:
    """Issues and validates one anti-forgery token per session."""

    def __init__(self, session_store: SessionStore):
        self._store = session_store

    def issue(self, session_id: str) -> str:
        """Return the session's token, minting one on first use."""
        session = self._store.get(session_id)
        if session is None:
            raise InvalidCsrfToken("No active session")
        if session.csrf_token:
            return session.csrf_token
        token = secrets.token_urlsafe(32)
        self._store.update(session_id, csrf_token=token)
        return token

    def validate(self, session_id: Optional[str], submitted: Optional[str]) -> Session:
        """
        Check `submitted` against the token bound to the session.
        Raises InvalidCsrfToken on a missing session, missing token or mismatch.
        """
        session = self._store.get(session_id)
        if session is None or not session.csrf_token:
            raise InvalidCsrfToken()
        if not submitted:
            raise InvalidCsrfToken()
        # Constant-time comparison
        if not secrets.compare_digest(session.csrf_token.encode(), submitted.encode()):
            raise InvalidCsrfToken()
        return session


def _matched_route_name(request: Request) -> Optional[str]:
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "name", None)
    return None


class CSRFMiddleware(BaseHTTPMiddleware):
    """
    Validate the X-CSRF-Token header on every mutating request whose route
    is not in CSRF_EXEMPT_ROUTES. Runs before the authentication wall, so
    a valid session alone is never enough.
    """

    async def dispatch(self, request: Request, call_next):
        if request.method.upper() in SAFE_METHODS:
            return await call_next(request)

        route_name = _matched_route_name(request)
        if route_name is None or route_name in CSRF_EXEMPT_ROUTES:
            # Unknown routes fall through to the router's 404/405
            return await call_next(request)

        guard: CsrfGuard = request.app.state.csrf_guard
        session_id = request.cookies.get(SESSION_COOKIE_NAME)
        try:
            guard.validate(session_id, request.headers.get(CSRF_HEADER_NAME))
        except InvalidCsrfToken as exc:
            logger.warning(f"CSRF rejected: {request.method} {request.url.path} session={redact(session_id)}")
            request.app.state.audit_sink.emit(
                "csrf.rejected",
                method=request.method,
                path=request.url.path,
                session=redact(session_id),
            )
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail, "error": exc.code},
            )

        return await call_next(request)
