"""
Session authentication.

Registration, login/logout and self-service account changes on top of an
IdentityBackend. The backend owns identities; this service keeps the local
`users` projection and the server-side session in step with it.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.orm import Session as DbSession

from app.middleware.security import CsrfGuard
from app.models.movie import Movie
from app.models.user import User
from app.schemas.auth import MIN_PASSWORD_LENGTH, MAX_PASSWORD_LENGTH
from app.services.identity_backend import IdentityBackend, IdentityBackendError, IdentityUser
from app.services.session_store import AuthContext, Session, SessionStore, new_session_id
from app.utils.audit import AuditSink, mask_email, redact
from app.utils.errors import (
    DeletionFailed,
    DuplicateIdentity,
    InvalidCredentials,
    Unauthenticated,
    UpstreamUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    session: Session
    user: User
    csrf_token: str


def _normalize_email(email: Optional[str]) -> str:
    if not email or not email.strip():
        raise ValidationError("Email is required")
    try:
        return validate_email(email.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError:
        raise ValidationError("Invalid email address")


def _check_password(password: Optional[str]) -> str:
    if not password:
        raise ValidationError("Password is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password) > MAX_PASSWORD_LENGTH:
        raise ValidationError(f"Password cannot be longer than {MAX_PASSWORD_LENGTH} characters")
    return password


class AuthService:
    def __init__(
        self,
        db: DbSession,
        identity: IdentityBackend,
        sessions: SessionStore,
        csrf: CsrfGuard,
        audit: AuditSink,
    ):
        self.db = db
        self.identity = identity
        self.sessions = sessions
        self.csrf = csrf
        self.audit = audit

    # ==================== PROJECTION ====================

    def _sync_projection(self, identity_user: IdentityUser) -> User:
        """Mirror the backend's view of an identity into `users`."""
        user = self.db.get(User, identity_user.id)
        if user is None:
            user = User(id=identity_user.id, email=identity_user.email)
            self.db.add(user)
        elif identity_user.email and user.email != identity_user.email:
            user.email = identity_user.email
        self.db.commit()
        self.db.refresh(user)
        return user

    def get_profile(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise Unauthenticated()
        return user

    # ==================== REGISTER / LOGIN / LOGOUT ====================

    def register(self, email: Optional[str], password: Optional[str]) -> User:
        """Create an identity. Does not log the caller in."""
        email = _normalize_email(email)
        password = _check_password(password)

        if self.db.query(User).filter(User.email == email).first():
            self.audit.emit("auth.register_failed", email=mask_email(email), reason="duplicate")
            raise DuplicateIdentity()

        try:
            identity_user = self.identity.sign_up(email, password)
        except IdentityBackendError as e:
            self.audit.emit("auth.register_failed", email=mask_email(email), reason=e.reason)
            if e.reason == "duplicate":
                raise DuplicateIdentity()
            if e.reason == "unavailable":
                raise UpstreamUnavailable()
            raise ValidationError("Registration failed")

        user = self._sync_projection(identity_user)
        self.audit.emit("auth.register", user_id=user.id, email=mask_email(email))
        return user

    def login(self, email: Optional[str], password: Optional[str]) -> LoginResult:
        """
        Verify credentials and open a session.

        Every backend rejection (wrong password, unknown email, unconfirmed
        account) surfaces as the same InvalidCredentials.
        """
        if not email or not password:
            raise InvalidCredentials()
        email = email.strip().lower()

        try:
            tokens = self.identity.sign_in_with_password(email, password)
        except IdentityBackendError as e:
            logger.warning(f"Login failed for {mask_email(email)}: {e.reason}")
            self.audit.emit("auth.login_failed", email=mask_email(email), reason=e.reason, level=logging.WARNING)
            if e.reason == "unavailable":
                raise UpstreamUnavailable()
            raise InvalidCredentials()

        user = self._sync_projection(tokens.user)
        auth = AuthContext(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=tokens.expires_in),
        )
        session = self.sessions.save(Session(
            session_id=new_session_id(),
            user_id=user.id,
            email=user.email,
            profile_image_ref=user.profile_image_ref,
            auth=auth,
        ))
        csrf_token = self.csrf.issue(session.session_id)
        session = self.sessions.get(session.session_id) or session

        self.audit.emit("auth.login", user_id=user.id, email=mask_email(email), session=redact(session.session_id))
        return LoginResult(session=session, user=user, csrf_token=csrf_token)

    def logout(self, session_id: Optional[str]) -> None:
        """Revoke remotely if possible, then always drop the local session."""
        session = self.sessions.get(session_id)
        if session is None:
            self.sessions.delete(session_id)
            return

        try:
            self.identity.sign_out(session.auth.access_token.get_secret_value())
        except Exception as e:
            logger.warning(f"Remote sign-out failed for session {redact(session_id)}: {e}")

        self.sessions.delete(session_id)
        self.audit.emit("auth.logout", user_id=session.user_id, session=redact(session_id))

    # ==================== PRIVILEGED UPDATES ====================

    def _reauthenticate(self, session: Session, access_token: Optional[str]) -> IdentityUser:
        """Re-establish the backend identity from the session's tokens."""
        if not access_token:
            raise Unauthenticated("Authentication required")
        refresh = session.auth.refresh_token.get_secret_value() if session.auth.refresh_token else None
        try:
            identity_user = self.identity.get_user(access_token, refresh)
        except IdentityBackendError as e:
            if e.reason == "unavailable":
                raise UpstreamUnavailable()
            raise Unauthenticated("Session expired. Please log in again.")
        if identity_user.id != session.user_id:
            raise Unauthenticated("Session expired. Please log in again.")
        return identity_user

    def _backend_update(self, access_token: str, **changes) -> IdentityUser:
        try:
            return self.identity.update_user(access_token, **changes)
        except IdentityBackendError as e:
            if e.reason == "duplicate":
                raise DuplicateIdentity()
            if e.reason == "invalid_token":
                raise Unauthenticated("Session expired. Please log in again.")
            if e.reason == "unavailable":
                raise UpstreamUnavailable()
            raise ValidationError("Update rejected")

    def update_email(self, session: Session, new_email: Optional[str], access_token: Optional[str]) -> User:
        if not access_token:
            raise Unauthenticated("Authentication required to update email")
        new_email = _normalize_email(new_email)
        self._reauthenticate(session, access_token)

        identity_user = self._backend_update(access_token, email=new_email)
        user = self._sync_projection(identity_user)
        self.sessions.update(session.session_id, email=user.email)

        self.audit.emit("auth.email_updated", user_id=user.id, email=mask_email(new_email))
        return user

    def update_password(
        self,
        session: Session,
        new_password: Optional[str],
        confirm_password: Optional[str],
        access_token: Optional[str],
    ) -> None:
        if not access_token:
            raise Unauthenticated("Authentication required to update password")
        new_password = _check_password(new_password)
        if confirm_password is not None and confirm_password != new_password:
            raise ValidationError("Passwords do not match")
        self._reauthenticate(session, access_token)

        identity_user = self._backend_update(access_token, password=new_password)
        self._sync_projection(identity_user)
        self.audit.emit("auth.password_updated", user_id=session.user_id)

    def update_avatar(self, session: Session, image_ref: Optional[str], access_token: Optional[str]) -> User:
        if not access_token:
            raise Unauthenticated("Authentication required to update profile image")
        if not image_ref or not image_ref.strip():
            raise ValidationError("Image reference is required")
        identity_user = self._reauthenticate(session, access_token)

        user = self._sync_projection(identity_user)
        user.profile_image_ref = image_ref.strip()
        self.db.commit()
        self.db.refresh(user)
        self.sessions.update(session.session_id, profile_image_ref=user.profile_image_ref)

        self.audit.emit("auth.avatar_updated", user_id=user.id)
        return user

    # ==================== ACCOUNT DELETION ====================

    def _deletion_failed(self, user_id: str, stage: str, error: Exception) -> None:
        logger.error(f"Account deletion failed for {user_id} at {stage}: {error}")
        self.audit.emit(
            "auth.account_delete_failed",
            user_id=user_id,
            stage=stage,
            error=getattr(error, "reason", type(error).__name__),
            level=logging.ERROR,
        )
        raise DeletionFailed()

    def delete_account(self, session: Session, access_token: Optional[str]) -> None:
        """
        Remove the caller's identity, movies, projection and session.

        The backend identity goes first and no local write transaction is
        open while it runs (the local backend writes through its own
        connection). If the backend refuses, nothing local has changed, the
        session survives and DeletionFailed is raised. Local rows are then
        deleted in one transaction; sessions are dropped only after both steps.
        """
        identity_user = self._reauthenticate(session, access_token)
        user_id = identity_user.id

        try:
            self.identity.delete_user(user_id)
        except Exception as e:
            self._deletion_failed(user_id, "identity", e)

        try:
            movies_deleted = self.db.query(Movie).filter(Movie.owner_id == user_id).delete(synchronize_session=False)
            projection_deleted = self.db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            self._deletion_failed(user_id, "records", e)

        sessions_dropped = self.sessions.delete_for_user(user_id)
        self.sessions.delete(session.session_id)

        self.audit.emit(
            "auth.account_deleted",
            user_id=user_id,
            email=mask_email(identity_user.email),
            movies_deleted=movies_deleted,
            projection_deleted=bool(projection_deleted),
            identity_deleted=True,
            sessions_dropped=sessions_dropped,
        )
