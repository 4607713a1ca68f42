# crm_auth/core/errors.py
from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class for auth-core failures mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and a stable ``code``. Errors raised
    by the refresh flow set ``clears_refresh_cookie`` so the handler in
    ``crm_auth.main`` drops the dead cookie along with the 401.
    """

    status_code: int = 400
    code: str = "BAD_REQUEST"
    message: str = "Bad request"
    clears_refresh_cookie: bool = False

    def __init__(self, message: Optional[str] = None, *, details: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)
        self.details = details


class InvalidCredentials(AuthError):
    """Unknown email, wrong password and soft-deleted principal all look the same."""
    status_code = 401
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"


class AlreadyExists(AuthError):
    status_code = 400
    code = "ALREADY_EXISTS"
    message = "User already exists"


class Unauthenticated(AuthError):
    """Missing or unusable bearer credentials on a protected route."""
    status_code = 401
    code = "UNAUTHENTICATED"
    message = "Authentication required"


# --- token codec ---------------------------------------------------------

class Malformed(AuthError):
    status_code = 401
    code = "MALFORMED_TOKEN"
    message = "Malformed token"


class InvalidSignature(AuthError):
    status_code = 401
    code = "INVALID_TOKEN"
    message = "Invalid token"


class Expired(AuthError):
    status_code = 401
    code = "TOKEN_EXPIRED"
    message = "Token expired"


# --- refresh flow ----------------------------------------------------------

class InvalidOrExpired(AuthError):
    status_code = 401
    code = "INVALID_OR_EXPIRED"
    message = "Invalid or expired refresh token"
    clears_refresh_cookie = True


class Revoked(AuthError):
    status_code = 401
    code = "REVOKED"
    message = "Refresh token has been revoked"
    clears_refresh_cookie = True


class PrincipalGone(AuthError):
    status_code = 401
    code = "PRINCIPAL_GONE"
    message = "User no longer exists"
    clears_refresh_cookie = True


# --- everything else -------------------------------------------------------

class ValidationFailed(AuthError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request"


class Forbidden(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Insufficient role"


class NotFound(AuthError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class DatabaseUnavailable(AuthError):
    status_code = 503
    code = "DATABASE_UNAVAILABLE"
    message = "Database connection error. Please try again later."


__all__ = [
    "AuthError",
    "InvalidCredentials",
    "AlreadyExists",
    "Unauthenticated",
    "Malformed",
    "InvalidSignature",
    "Expired",
    "InvalidOrExpired",
    "Revoked",
    "PrincipalGone",
    "ValidationFailed",
    "Forbidden",
    "NotFound",
    "DatabaseUnavailable",
]
