"""Error taxonomy for the authentication core.

Every failure that leaves :class:`~dental_auth.services.auth_service.AuthService`
is one of these. The HTTP layer maps them to responses in ``api/errors.py``;
raw database or crypto errors never reach a client.
"""

import math
from datetime import datetime, timezone


class AuthError(Exception):
    """Base class for errors surfaced to API callers.

    Attributes:
        message: Client-safe description.
        status_code: HTTP status used when rendering the error.
    """

    status_code = 400
    default_message = "Request failed."

    def __init__(self, message: str | None = None, status_code: int | None = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input; ``errors`` lists every violated rule."""

    status_code = 400
    default_message = "Invalid request."

    def __init__(self, message: str | None = None, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


class InvalidCredentialsError(AuthError):
    status_code = 401
    default_message = "Invalid email or password."


class AccountLockedError(AuthError):
    """The account is temporarily locked after repeated failed logins."""

    status_code = 403

    def __init__(self, unlock_at: datetime):
        self.unlock_at = unlock_at
        remaining = (unlock_at - datetime.now(timezone.utc)).total_seconds() / 60
        self.minutes_remaining = max(1, math.ceil(remaining))
        super().__init__(
            "Account is temporarily locked due to too many failed login attempts. "
            f"Try again in {self.minutes_remaining} minute(s)."
        )


class EmailNotVerifiedError(AuthError):
    status_code = 403
    default_message = "Please verify your email address before logging in."


class InvalidTokenError(AuthError):
    """A refresh, access, verification or reset token failed a check.

    The message never says which check failed.
    """

    status_code = 401
    default_message = "Invalid or expired token."


class PasswordReusedError(AuthError):
    status_code = 400

    def __init__(self, history_count: int):
        self.history_count = history_count
        super().__init__(
            f"Password was used recently. Choose a password different from your last {history_count}."
        )


class ForbiddenError(AuthError):
    status_code = 403
    default_message = "Forbidden."


class RateLimitExceededError(AuthError):
    status_code = 429
    default_message = "Too many requests, please try again later."


class ServiceUnavailableError(AuthError):
    """An unexpected failure inside the core; details are logged server-side."""

    status_code = 500
    default_message = "An unexpected error occurred."
