"""
Error taxonomy for the watchlist API.

Every error is an HTTPException so services can raise them directly and the
app-level handler renders them uniformly as {"detail": ..., "error": code}.
Messages are generic; internals never reach the response body.
"""
from typing import Dict, Optional
from fastapi import HTTPException, status


class WatchlistError(HTTPException):
    """Base class: carries a stable machine-readable code."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"
    default_detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(
            status_code=self.status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class ValidationError(WatchlistError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_detail = "Invalid input"


class Unauthenticated(WatchlistError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"
    default_detail = "Authentication required"


class InvalidCredentials(WatchlistError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "invalid_credentials"
    default_detail = "Incorrect email or password"


class Forbidden(WatchlistError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_detail = "Forbidden"


class InvalidCsrfToken(Forbidden):
    code = "invalid_csrf_token"
    default_detail = "Invalid security token. Please try again."


class NotFound(WatchlistError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_detail = "Movie not found"


class DuplicateIdentity(WatchlistError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_identity"
    default_detail = "Email already registered"


class RateLimited(WatchlistError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "rate_limited"
    default_detail = "Rate limit exceeded. Please try again later."


class UpstreamUnavailable(WatchlistError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "upstream_unavailable"
    default_detail = "Upstream service unavailable. Please try again later."


class DeletionFailed(WatchlistError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "deletion_failed"
    default_detail = "Account deletion failed. Your account was not removed."


class InternalError(WatchlistError):
    pass
