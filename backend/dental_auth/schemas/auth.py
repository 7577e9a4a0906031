"""Pydantic schemas for authentication endpoints and the user domain model.

Request and response bodies use camelCase on the wire (``refreshToken``,
``newPassword``) to match the desktop and web clients; Python code uses
snake_case attribute names.
"""

from datetime import datetime

from dental_auth.core.roles import Role
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for wire schemas serialized with camelCase keys."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class UserRecord(BaseModel):
    """Internal user representation returned by the credential store.

    ``roles`` is always a set of :class:`Role`; the storage encoding never
    leaves the store.
    """

    id: int
    email: str
    full_name: str | None = None
    password_hash: str
    roles: set[Role] = set()
    email_verified: bool = False
    failed_login_attempts: int = 0
    account_locked_until: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    deleted_at: datetime | None = None


class AccessClaims(BaseModel):
    """Claims carried by a decoded access token."""

    sub: int
    email: str
    roles: set[Role] = set()
    iat: int | None = None
    exp: int | None = None


class UserPublic(CamelModel):
    """Public user representation returned by the API."""

    id: int
    email: str
    roles: list[Role]


class UserProfile(UserPublic):
    full_name: str | None = None
    email_verified: bool = False
    last_login_at: datetime | None = None


class LoginRequest(CamelModel):
    # NOTE: optional so missing fields surface as the core's ValidationError
    email: str | None = None
    password: str | None = None


class LoginResponse(CamelModel):
    access_token: str
    refresh_token: str
    user: UserPublic


class TokenRefresh(CamelModel):
    """Request body for refreshing the access token using a refresh token."""

    refresh_token: str | None = None


class AccessToken(CamelModel):
    access_token: str


class LogoutRequest(CamelModel):
    refresh_token: str | None = None


class PasswordResetRequest(CamelModel):
    email: str | None = None


class PasswordResetComplete(CamelModel):
    token: str | None = None
    new_password: str | None = None


class PasswordChange(CamelModel):
    current_password: str | None = None
    new_password: str | None = None


class ResendVerification(CamelModel):
    email: str | None = None


class UserCreate(CamelModel):
    """Request body for creating a staff account (admin only)."""

    email: str
    password: str
    roles: list[Role] = []
    full_name: str | None = None
    email_verified: bool = False


class MessageResponse(BaseModel):
    message: str


class SessionInfo(CamelModel):
    """An active refresh-token session."""

    id: int
    user_agent: str | None = None
    ip_address: str | None = None
    created_at: datetime | None = None
    expires_at: datetime
