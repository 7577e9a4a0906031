"""Tests for email verification with verification required at login."""

from unittest.mock import AsyncMock

import pytest


@pytest.fixture
def settings(settings_factory):
    return settings_factory(REQUIRE_EMAIL_VERIFICATION=True)


@pytest.fixture
def sent_emails(auth):
    auth.email.send_verification_email = AsyncMock()
    auth.email.send_welcome_email = AsyncMock()
    return auth.email


async def test_unverified_user_cannot_log_in_until_verified(client, create_user, sent_emails):
    await create_user(email_verified=False)
    token = sent_emails.send_verification_email.await_args.args[1]

    response = await client.post("/api/auth/login", json={"email": "doc@example.com", "password": "Sec#9True!"})
    assert response.status_code == 403
    assert "verify your email" in response.json()["error"]["message"]

    response = await client.get(f"/api/auth/verify-email/{token}")
    assert response.status_code == 200
    sent_emails.send_welcome_email.assert_awaited_once()

    response = await client.post("/api/auth/login", json={"email": "doc@example.com", "password": "Sec#9True!"})
    assert response.status_code == 200


async def test_wrong_password_for_unverified_user_is_invalid_credentials(client, create_user, sent_emails):
    await create_user(email_verified=False)

    response = await client.post("/api/auth/login", json={"email": "doc@example.com", "password": "Wrong#Pass1"})

    assert response.status_code == 401


async def test_verification_token_is_single_use(client, create_user, sent_emails):
    await create_user(email_verified=False)
    token = sent_emails.send_verification_email.await_args.args[1]

    assert (await client.get(f"/api/auth/verify-email/{token}")).status_code == 200
    response = await client.get(f"/api/auth/verify-email/{token}")
    assert response.status_code == 400
    assert response.json() == {"error": {"message": "Invalid or expired verification token."}}


async def test_resend_replaces_token(client, create_user, sent_emails):
    await create_user(email_verified=False)
    first = sent_emails.send_verification_email.await_args.args[1]

    response = await client.post("/api/auth/verify-email/resend", json={"email": "doc@example.com"})
    assert response.status_code == 200
    second = sent_emails.send_verification_email.await_args.args[1]

    assert first != second
    assert (await client.get(f"/api/auth/verify-email/{first}")).status_code == 400
    assert (await client.get(f"/api/auth/verify-email/{second}")).status_code == 200


async def test_resend_for_unknown_email_is_indistinguishable(client, sent_emails):
    response = await client.post("/api/auth/verify-email/resend", json={"email": "ghost@example.com"})

    assert response.status_code == 200
    sent_emails.send_verification_email.assert_not_awaited()


async def test_resend_without_email_gets_the_generic_reply(client, sent_emails):
    response = await client.post("/api/auth/verify-email/resend", json={"email": " "})

    assert response.status_code == 200
    assert response.json()["message"].startswith("If the email exists")
    sent_emails.send_verification_email.assert_not_awaited()
