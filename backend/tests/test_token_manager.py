"""Tests for access, refresh and single-use tokens."""

from datetime import timedelta

import jwt
import pytest
from dental_auth.core.exceptions import InvalidTokenError
from dental_auth.core.roles import Role
from dental_auth.core.security import utcnow
from dental_auth.models.auth import RefreshToken
from dental_auth.services.token_manager import claims_for
from sqlalchemy import update


async def test_access_token_round_trip(app, create_user):
    tokens = app.state.tokens
    user = await create_user(roles=(Role.DENTIST, Role.ADMIN))

    claims = tokens.decode_access_token(tokens.issue_access_token(claims_for(user)))

    assert claims.sub == user.id
    assert claims.email == "doc@example.com"
    assert claims.roles == {Role.DENTIST, Role.ADMIN}
    assert claims.exp - claims.iat == 15 * 60


async def test_expired_access_token_fails(app, create_user):
    tokens = app.state.tokens
    user = await create_user()
    token = tokens.issue_access_token(claims_for(user), expires_delta=timedelta(seconds=-1))

    with pytest.raises(InvalidTokenError):
        tokens.decode_access_token(token)


async def test_access_token_signed_with_other_secret_fails(app, create_user):
    user = await create_user()
    forged = jwt.encode(
        {**claims_for(user), "token_type": "access", "exp": utcnow() + timedelta(minutes=5)},
        "some-other-secret-that-is-long-enough",
        algorithm="HS256",
    )
    with pytest.raises(InvalidTokenError):
        app.state.tokens.decode_access_token(forged)


async def test_refresh_token_is_not_an_access_token(app, create_user):
    tokens = app.state.tokens
    user = await create_user()
    refresh_token = await tokens.issue_refresh_token(claims_for(user))

    with pytest.raises(InvalidTokenError):
        tokens.decode_access_token(refresh_token)


async def test_revoked_refresh_token_no_longer_verifies(app, create_user):
    tokens = app.state.tokens
    user = await create_user()
    refresh_token = await tokens.issue_refresh_token(claims_for(user), "pytest", "127.0.0.1")

    assert (await tokens.verify_refresh_token(refresh_token)).id == user.id

    await tokens.revoke(refresh_token)
    await tokens.revoke(refresh_token)

    assert await tokens.verify_refresh_token(refresh_token) is None


async def test_refresh_token_of_deleted_user_fails(app, create_user):
    tokens = app.state.tokens
    user = await create_user()
    refresh_token = await tokens.issue_refresh_token(claims_for(user))

    await app.state.store.soft_delete(user.id)

    assert await tokens.verify_refresh_token(refresh_token) is None


async def test_unknown_refresh_token_fails(app):
    assert await app.state.tokens.verify_refresh_token("not-a-token") is None
    assert await app.state.tokens.verify_refresh_token("") is None


async def test_revoke_all_and_active_sessions(app, create_user):
    tokens = app.state.tokens
    user = await create_user()
    for device in ("laptop", "tablet"):
        await tokens.issue_refresh_token(claims_for(user), device, "10.0.0.1")

    sessions = await tokens.list_active_sessions(user.id)
    assert {s.user_agent for s in sessions} == {"laptop", "tablet"}

    assert await tokens.revoke_all_for_user(user.id) == 2
    assert await tokens.list_active_sessions(user.id) == []


async def test_cleanup_deletes_only_tokens_past_retention(app, create_user):
    tokens = app.state.tokens
    user = await create_user()
    old = await tokens.issue_refresh_token(claims_for(user))
    recent = await tokens.issue_refresh_token(claims_for(user))
    live = await tokens.issue_refresh_token(claims_for(user))

    async with app.state.session_factory() as db:
        for token, age in ((old, 40), (recent, 10)):
            await db.execute(
                update(RefreshToken)
                .where(RefreshToken.token == token)
                .values(expires_at=utcnow() - timedelta(days=age))
            )
        await db.commit()

    assert await tokens.cleanup_expired_tokens() == 1
    assert await tokens.verify_refresh_token(live) is not None


async def _expire_refresh_token(app, token):
    async with app.state.session_factory() as db:
        await db.execute(
            update(RefreshToken).where(RefreshToken.token == token).values(expires_at=utcnow() - timedelta(seconds=1))
        )
        await db.commit()


async def test_expired_refresh_token_no_longer_verifies(app, create_user):
    tokens = app.state.tokens
    user = await create_user()
    token = await tokens.issue_refresh_token(claims_for(user))
    assert await tokens.verify_refresh_token(token) is not None

    await _expire_refresh_token(app, token)

    assert await tokens.verify_refresh_token(token) is None


async def test_new_reset_token_replaces_previous(app, create_user):
    tokens = app.state.tokens
    user = await create_user()

    first = await tokens.issue_password_reset_token(user.id)
    second = await tokens.issue_password_reset_token(user.id)

    assert len(second) == 64
    assert await tokens.verify_password_reset_token(first) is None
    assert (await tokens.verify_password_reset_token(second)).id == user.id


async def test_verification_token_expires(app, create_user):
    tokens = app.state.tokens
    user = await create_user(email_verified=False)
    token = await tokens.issue_email_verification_token(user.id)

    await app.state.store.set_email_verification_token(user.id, token, utcnow() - timedelta(minutes=1))

    assert await tokens.verify_email_verification_token(token) is None
