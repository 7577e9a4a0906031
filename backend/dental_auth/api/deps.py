"""FastAPI dependencies: service lookup and bearer-token authentication.

Services are built once by the app factory and stored on ``app.state``;
routes reach them through the getters below so tests can build an app with
their own settings.
"""

from typing import Annotated

from dental_auth.core.exceptions import ForbiddenError, InvalidTokenError
from dental_auth.core.logging import logger
from dental_auth.core.roles import Role
from dental_auth.core.security import RequestContext
from dental_auth.models.audit import AuditEventType
from dental_auth.schemas.auth import AccessClaims
from dental_auth.services.audit_sink import AuditSink
from dental_auth.services.auth_service import AuthService
from dental_auth.services.credential_store import CredentialStore
from dental_auth.services.token_manager import TokenManager
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

# NOTE: auto_error off so a missing header renders through our error handlers
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_token_manager(request: Request) -> TokenManager:
    return request.app.state.tokens


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.store


def get_audit_sink(request: Request) -> AuditSink:
    return request.app.state.audit


def get_request_context(request: Request) -> RequestContext:
    return RequestContext.from_request(request)


async def get_current_user(
    token: Annotated[str | None, Depends(oauth2_scheme)],
    tokens: Annotated[TokenManager, Depends(get_token_manager)],
    store: Annotated[CredentialStore, Depends(get_credential_store)],
) -> AccessClaims:
    """Validate the bearer access token and return its claims.

    Raises:
        InvalidTokenError: Missing or invalid token, or the user no longer
            exists (soft-deleted users included).
    """
    if not token:
        raise InvalidTokenError("Not authenticated.")
    claims = tokens.decode_access_token(token)
    if await store.get_by_id(claims.sub) is None:
        logger.warning("Access token presented for missing user_id={}", claims.sub)
        raise InvalidTokenError()
    return claims


async def get_optional_user(
    token: Annotated[str | None, Depends(oauth2_scheme)],
    tokens: Annotated[TokenManager, Depends(get_token_manager)],
) -> AccessClaims | None:
    """Claims of a valid bearer token, or None. Never raises."""
    if not token:
        return None
    try:
        return tokens.decode_access_token(token)
    except InvalidTokenError:
        return None


def require_roles(*roles: Role):
    """Build a dependency that admits callers holding any of ``roles``."""

    async def dependency(
        request: Request,
        current_user: Annotated[AccessClaims, Depends(get_current_user)],
    ) -> AccessClaims:
        if current_user.roles.isdisjoint(roles):
            ctx = RequestContext.from_request(request)
            request.app.state.audit.record(
                AuditEventType.UNAUTHORIZED_ACCESS,
                user_id=current_user.sub,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                metadata={"path": request.url.path, "required": sorted(r.value for r in roles)},
                success=False,
            )
            logger.warning("User id={} denied access to {}", current_user.sub, request.url.path)
            raise ForbiddenError("Insufficient permissions.")
        return current_user

    return dependency


CurrentUser = Annotated[AccessClaims, Depends(get_current_user)]
OptionalUser = Annotated[AccessClaims | None, Depends(get_optional_user)]
Context = Annotated[RequestContext, Depends(get_request_context)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
