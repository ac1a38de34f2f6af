from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class carries an HTTP ``status_code`` and a stable
    ``error_code`` that clients can switch on:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentialsError(AuthenticationError):
    """Login mismatch; identical for unknown email and wrong password."""

    def __init__(self, message: str = "Invalid credentials", **kwargs) -> None:
        super().__init__(message, **kwargs)


class InvalidTokenError(AuthenticationError):
    """Expired, tampered or otherwise unusable token."""

    def __init__(self, message: str = "Invalid token", **kwargs) -> None:
        super().__init__(message, **kwargs)


class UnauthenticatedError(AuthenticationError):
    """No valid principal on a route that requires one."""

    def __init__(self, message: str = "Authentication required", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class AccountConflictError(ConflictError):
    """A write would break account uniqueness; never retried."""


class DuplicateEmailError(AccountConflictError):
    def __init__(self, message: str = "Email already exists", **kwargs) -> None:
        kwargs.setdefault("detail", {"field": "email"})
        super().__init__(message, **kwargs)


class DuplicateUsernameError(AccountConflictError):
    def __init__(self, message: str = "Username already exists", **kwargs) -> None:
        kwargs.setdefault("detail", {"field": "username"})
        super().__init__(message, **kwargs)


class MalformedFederatedProfileError(AccountConflictError):
    """Provider payload is missing the subject id or email."""


class UsernameUnavailableError(AccountConflictError):
    """No free username could be synthesised for a new federated account."""


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class ProviderNotConfiguredError(ServerError):
    """Federated login attempted without client credentials configured."""


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "InvalidTokenError",
    "UnauthenticatedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "AccountConflictError",
    "DuplicateEmailError",
    "DuplicateUsernameError",
    "MalformedFederatedProfileError",
    "UsernameUnavailableError",
    "ServerError",
    "ProviderNotConfiguredError",
]
