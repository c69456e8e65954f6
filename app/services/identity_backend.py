"""
Identity backends.

The remote account/password store that issues access + refresh tokens.
Two implementations share one interface:

- SupabaseIdentityBackend: Supabase Auth (GoTrue) REST API over requests
- LocalIdentityBackend: accounts in our own database, bcrypt hashes, JWTs

Select with IDENTITY_BACKEND=supabase|local.
"""
import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Optional

import requests
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.identity_account import IdentityAccount
from app.utils import security

logger = logging.getLogger(__name__)


class IdentityBackendError(Exception):
    """
    Raised for any rejection by the identity backend.

    `reason` is a short machine tag (invalid_credentials, duplicate,
    invalid_token, not_found, unavailable, rejected) used for logging and
    for the few cases the caller maps to a distinct error.
    """

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


@dataclass(frozen=True)
class IdentityUser:
    id: str
    email: str


@dataclass(frozen=True)
class IdentityTokens:
    user: IdentityUser
    access_token: str
    refresh_token: Optional[str]
    expires_in: int  # seconds


class IdentityBackend(ABC):
    @abstractmethod
    def sign_up(self, email: str, password: str) -> IdentityUser:
        ...

    @abstractmethod
    def sign_in_with_password(self, email: str, password: str) -> IdentityTokens:
        ...

    @abstractmethod
    def sign_out(self, access_token: str) -> None:
        ...

    @abstractmethod
    def get_user(self, access_token: str, refresh_token: Optional[str] = None) -> IdentityUser:
        """Re-establish the identity context from the caller's tokens."""

    @abstractmethod
    def update_user(
        self,
        access_token: str,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> IdentityUser:
        ...

    @abstractmethod
    def delete_user(self, user_id: str) -> None:
        ...


# ============================================
# Supabase Auth (GoTrue REST)
# ============================================

class SupabaseIdentityBackend(IdentityBackend):
    """Talks to Supabase Auth. The service-role key is only used for admin deletes."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        service_role_key: Optional[str] = None,
        http: Optional[requests.Session] = None,
        timeout: int = 10,
    ):
        if not url or not anon_key:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must be configured")
        self.base_url = url.rstrip("/") + "/auth/v1"
        self._anon_key = anon_key
        self._service_role_key = service_role_key
        self._http = http or requests.Session()
        self._timeout = timeout

    def _headers(self, bearer: Optional[str] = None, admin: bool = False) -> Dict[str, str]:
        key = self._service_role_key if admin else self._anon_key
        return {
            "apikey": key,
            "Authorization": f"Bearer {bearer or key}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        endpoint: str,
        failure_reason: str,
        bearer: Optional[str] = None,
        admin: bool = False,
        **kwargs,
    ) -> Dict:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self._http.request(
                method, url,
                headers=self._headers(bearer, admin),
                timeout=self._timeout,
                **kwargs,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Identity backend unreachable for {endpoint}: {type(e).__name__}")
            raise IdentityBackendError("unavailable", "Identity backend unreachable")

        if response.status_code >= 500:
            logger.error(f"Identity backend error for {endpoint}: HTTP {response.status_code}")
            raise IdentityBackendError("unavailable", f"HTTP {response.status_code}")
        if not response.ok:
            message = self._error_message(response)
            logger.info(f"Identity backend rejected {endpoint}: HTTP {response.status_code} {message}")
            if "already registered" in message.lower() or "already exists" in message.lower():
                raise IdentityBackendError("duplicate", message)
            raise IdentityBackendError(failure_reason, message)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.reason or ""
        return str(body.get("msg") or body.get("error_description") or body.get("message") or body.get("error") or "")

    @staticmethod
    def _to_user(data: Dict) -> IdentityUser:
        user = data.get("user", data)
        return IdentityUser(id=str(user["id"]), email=user.get("email") or "")

    def _to_tokens(self, data: Dict) -> IdentityTokens:
        return IdentityTokens(
            user=self._to_user(data),
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=int(data.get("expires_in", 3600)),
        )

    def sign_up(self, email: str, password: str) -> IdentityUser:
        data = self._request("POST", "/signup", "rejected", json={"email": email, "password": password})
        return self._to_user(data)

    def sign_in_with_password(self, email: str, password: str) -> IdentityTokens:
        data = self._request(
            "POST", "/token", "invalid_credentials",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return self._to_tokens(data)

    def refresh(self, refresh_token: str) -> IdentityTokens:
        data = self._request(
            "POST", "/token", "invalid_token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return self._to_tokens(data)

    def sign_out(self, access_token: str) -> None:
        self._request("POST", "/logout", "invalid_token", bearer=access_token)

    def get_user(self, access_token: str, refresh_token: Optional[str] = None) -> IdentityUser:
        try:
            return self._to_user(self._request("GET", "/user", "invalid_token", bearer=access_token))
        except IdentityBackendError as e:
            if e.reason != "invalid_token" or not refresh_token:
                raise
        logger.info("Access token rejected, re-establishing identity with refresh token")
        return self.refresh(refresh_token).user

    def update_user(
        self,
        access_token: str,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> IdentityUser:
        changes = {}
        if email is not None:
            changes["email"] = email
        if password is not None:
            changes["password"] = password
        data = self._request("PUT", "/user", "rejected", bearer=access_token, json=changes)
        return self._to_user(data)

    def delete_user(self, user_id: str) -> None:
        if not self._service_role_key:
            raise IdentityBackendError("rejected", "SUPABASE_SERVICE_ROLE_KEY is required to delete users")
        self._request("DELETE", f"/admin/users/{user_id}", "not_found", admin=True)


# ============================================
# Local backend (own database)
# ============================================

class LocalIdentityBackend(IdentityBackend):
    """
    Accounts stored in identity_accounts. Each call opens its own database
    session, the backend is independent of the request's unit of work.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        access_token_ttl: Optional[timedelta] = None,
    ):
        self._session_factory = session_factory
        self._access_ttl = access_token_ttl or timedelta(minutes=security.ACCESS_TOKEN_EXPIRE_MINUTES)

    def _issue(self, account: IdentityAccount) -> IdentityTokens:
        version = int(account.token_version or 0)
        return IdentityTokens(
            user=IdentityUser(id=account.id, email=account.email),
            access_token=security.create_access_token(account.id, version, self._access_ttl),
            refresh_token=security.create_refresh_token(account.id, version),
            expires_in=int(self._access_ttl.total_seconds()),
        )

    @staticmethod
    def _account_for(db: Session, token: str, token_type: str) -> IdentityAccount:
        payload = security.decode_token(token)
        if not payload or payload.get("type") != token_type:
            raise IdentityBackendError("invalid_token", "Invalid or expired token")
        account = db.get(IdentityAccount, payload.get("sub"))
        if account is None:
            raise IdentityBackendError("invalid_token", "Unknown identity")
        if payload.get("ver") != account.token_version:
            raise IdentityBackendError("invalid_token", "Token revoked")
        return account

    def sign_up(self, email: str, password: str) -> IdentityUser:
        db = self._session_factory()
        try:
            account = IdentityAccount(
                id=str(uuid.uuid4()),
                email=email.lower(),
                password_hash=security.hash_password(password),
                token_version=0,
            )
            db.add(account)
            db.commit()
            return IdentityUser(id=account.id, email=account.email)
        except IntegrityError:
            db.rollback()
            raise IdentityBackendError("duplicate", "Email already registered")
        finally:
            db.close()

    def sign_in_with_password(self, email: str, password: str) -> IdentityTokens:
        db = self._session_factory()
        try:
            account = db.query(IdentityAccount).filter(IdentityAccount.email == email.lower()).first()
            if not account:
                raise IdentityBackendError("invalid_credentials", "Unknown email")
            if not security.verify_password(password, str(account.password_hash)):
                raise IdentityBackendError("invalid_credentials", "Password mismatch")
            return self._issue(account)
        finally:
            db.close()

    def sign_out(self, access_token: str) -> None:
        db = self._session_factory()
        try:
            account = self._account_for(db, access_token, "access")
            account.token_version = int(account.token_version or 0) + 1
            db.commit()
        finally:
            db.close()

    def get_user(self, access_token: str, refresh_token: Optional[str] = None) -> IdentityUser:
        db = self._session_factory()
        try:
            try:
                account = self._account_for(db, access_token, "access")
            except IdentityBackendError:
                if not refresh_token:
                    raise
                account = self._account_for(db, refresh_token, "refresh")
            return IdentityUser(id=account.id, email=account.email)
        finally:
            db.close()

    def update_user(
        self,
        access_token: str,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> IdentityUser:
        db = self._session_factory()
        try:
            account = self._account_for(db, access_token, "access")
            if email is not None:
                account.email = email.lower()
            if password is not None:
                account.password_hash = security.hash_password(password)
            db.commit()
            return IdentityUser(id=account.id, email=account.email)
        except IntegrityError:
            db.rollback()
            raise IdentityBackendError("duplicate", "Email already registered")
        finally:
            db.close()

    def delete_user(self, user_id: str) -> None:
        db = self._session_factory()
        try:
            deleted = db.query(IdentityAccount).filter(IdentityAccount.id == user_id).delete()
            db.commit()
            if not deleted:
                raise IdentityBackendError("not_found", "Unknown identity")
        finally:
            db.close()


def build_identity_backend(session_factory: Callable[[], Session]) -> IdentityBackend:
    """Construct the backend named by IDENTITY_BACKEND."""
    kind = os.getenv("IDENTITY_BACKEND", "local").lower()
    if kind == "supabase":
        return SupabaseIdentityBackend(
            url=os.getenv("SUPABASE_URL", ""),
            anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
            service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
        )
    if kind != "local":
        raise ValueError(f"Unknown IDENTITY_BACKEND: {kind}")
    return LocalIdentityBackend(session_factory)
