from fastapi import APIRouter, Depends, Response
import os

from app.middleware.security import SESSION_COOKIE_NAME
from app.schemas.auth import (
    UserRegister,
    UserLogin,
    EmailUpdate,
    PasswordUpdate,
    AvatarUpdate,
    UserResponse,
    LoginResponse,
    CsrfTokenResponse,
    MessageResponse,
)
from app.services.auth_service import AuthService
from app.services.session_store import Session
from app.utils.dependencies import (
    get_auth_service,
    get_current_session,
    get_session_id,
)

# Define router
router = APIRouter(prefix="/auth", tags=["Authentication"])


def _access_token(session: Session) -> str:
    return session.auth.access_token.get_secret_value()


def _set_session_cookie(response: Response, session: Session) -> None:
    max_age = max(0, int((session.expires_at - session.created_at).total_seconds()))
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session.session_id,
        max_age=max_age,
        httponly=True,
        secure=os.getenv("ENVIRONMENT") == "production",
        samesite="lax",
        path="/",
    )


# Register a new user
@router.post("/register", name="register", response_model=UserResponse)
def register(user_data: UserRegister, auth: AuthService = Depends(get_auth_service)):
    """Register a new user. Does not log in; call /auth/login afterwards."""
    return auth.register(user_data.email, user_data.password)


# Login endpoint
@router.post("/login", name="login", response_model=LoginResponse)
def login(
    credentials: UserLogin,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
):
    """
    Login with email and password

    Sets the session cookie and returns the CSRF token to send as
    X-CSRF-Token on every state-changing request.
    """
    result = auth.login(credentials.email, credentials.password)
    _set_session_cookie(response, result.session)
    return {
        "user": result.user,
        "csrf_token": result.csrf_token,
        "expires_at": result.session.expires_at,
    }


@router.post("/logout", name="logout", response_model=MessageResponse)
def logout(
    response: Response,
    session_id: str = Depends(get_session_id),
    auth: AuthService = Depends(get_auth_service),
):
    """Logout. Safe to call without a session."""
    auth.logout(session_id)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"message": "Logged out successfully"}


# Get current authenticated user
@router.get("/me", response_model=UserResponse)
def get_me(
    session: Session = Depends(get_current_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Get current authenticated user"""
    return auth.get_profile(session.user_id)


@router.get("/csrf-token", response_model=CsrfTokenResponse)
def get_csrf_token(
    session: Session = Depends(get_current_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Anti-forgery token bound to the current session"""
    return {"csrf_token": auth.csrf.issue(session.session_id)}


@router.post("/email", response_model=UserResponse)
def update_email(
    payload: EmailUpdate,
    session: Session = Depends(get_current_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Change the account email (the identity backend may require confirmation)"""
    return auth.update_email(session, payload.email, _access_token(session))


@router.post("/password", response_model=MessageResponse)
def update_password(
    payload: PasswordUpdate,
    session: Session = Depends(get_current_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Change the account password"""
    auth.update_password(session, payload.password, payload.confirm_password, _access_token(session))
    return {"message": "Password updated successfully!"}


@router.post("/avatar", response_model=UserResponse)
def update_avatar(
    payload: AvatarUpdate,
    session: Session = Depends(get_current_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Point the profile image at an already-uploaded file"""
    return auth.update_avatar(session, payload.profile_image_ref, _access_token(session))


@router.post("/delete-account", response_model=MessageResponse)
def delete_account(
    response: Response,
    session: Session = Depends(get_current_session),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Delete the account with all of its movies

    ⚠️ WARNING: This action cannot be undone!
    """
    auth.delete_account(session, _access_token(session))
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"message": "Account deleted successfully"}
