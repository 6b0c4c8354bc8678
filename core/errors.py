"""
core/errors.py -- Typed error taxonomy shared by auth/, content/ and api/.

Every error carries an HTTP status, a machine-checkable code and a
human-readable message. api/main.py renders them into the ErrorResponse
envelope; nothing below knows about HTTP responses.

Propagation:
  AuthenticationMissing, AuthenticationExpired, AuthorizationInsufficient and
  SelfActionForbidden are raised at the guard / dependency boundary only.
  ValidationFailed, NotFound and Conflict are raised by handlers and stores.
"""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    status_code: int = 400
    code: str = "error"
    message: str = "Request failed."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)


class AuthenticationMissing(AppError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class AuthenticationExpired(AppError):
    status_code = 401
    code = "session_expired"
    message = "Session expired. Please login again."


class BadCredentials(AppError):
    """Wrong email or password. The same answer for unknown emails [C1]."""

    status_code = 401
    code = "bad_credentials"
    message = "Invalid email or password."


class AuthorizationInsufficient(AppError):
    status_code = 403
    code = "forbidden"
    message = "Insufficient permissions."


class SelfActionForbidden(AppError):
    """Actor and target are the same identity on a restricted action.

    The code is the violation reason ("self_demotion", "self_suspension",
    "self_deletion") so clients can render a specific message.
    """

    status_code = 403

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        self.code = reason
        super().__init__(message)


class AccountDisabled(AppError):
    status_code = 403
    code = "account_disabled"
    message = "Account has been disabled."


class ValidationFailed(AppError):
    status_code = 400
    code = "validation_failed"
    message = "Validation failed."


class ResetTokenRejected(AppError):
    """Unknown, expired or already-consumed reset token.

    reason is "unknown" or "expired" for logging; the client-facing code and
    message are the same for both.
    """

    status_code = 400
    code = "invalid_reset_token"
    message = "Invalid or expired reset token."

    def __init__(self, reason: str = "unknown") -> None:
        self.reason = reason
        super().__init__()


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    message = "Resource already exists."

    def __init__(self, message: Optional[str] = None, *, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class LastAdminRequired(AppError):
    status_code = 409
    code = "last_admin"
    message = "Cannot remove the last active admin account."
