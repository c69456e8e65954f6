"""
Middleware package for security and request processing
"""
from .security import (
    SecurityHeadersMiddleware,
    CSRFMiddleware,
    CsrfGuard,
    CSRF_EXEMPT_ROUTES,
)

__all__ = [
    "SecurityHeadersMiddleware",
    "CSRFMiddleware",
    "CsrfGuard",
    "CSRF_EXEMPT_ROUTES",
]
