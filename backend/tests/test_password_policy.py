"""Tests for password strength and reuse rules."""

from dental_auth.core.security import PasswordHasher
from dental_auth.services.password_policy import PasswordPolicy


def test_strong_password_passes():
    check = PasswordPolicy().validate_strength("Sec#9True!")
    assert check.valid
    assert check.errors == []


def test_every_violated_rule_is_reported():
    check = PasswordPolicy().validate_strength("abc")
    assert not check.valid
    assert "Password must be at least 8 characters" in check.errors
    assert "Password must contain at least one uppercase letter" in check.errors
    assert "Password must contain at least one number" in check.errors
    assert "Password must contain at least one special character" in check.errors
    assert "Password must contain at least one lowercase letter" not in check.errors


def test_missing_password():
    for value in (None, "", 12345678):
        check = PasswordPolicy().validate_strength(value)
        assert check.errors == ["Password is required"]


def test_common_password_rejected_even_if_complex():
    check = PasswordPolicy().validate_strength("P@ssw0rd")
    assert check.errors == ["Password is too common, please choose a stronger password"]


def test_min_length_is_configurable():
    check = PasswordPolicy(min_length=12).validate_strength("Sec#9True!")
    assert check.errors == ["Password must be at least 12 characters"]


async def test_reuse_detected_against_any_recent_hash():
    hasher = PasswordHasher(rounds=4)
    history = [await hasher.hash(p) for p in ("Newest#1a", "Middle#2b", "Oldest#3c")]
    policy = PasswordPolicy()

    assert await policy.is_reused("Middle#2b", history, hasher.verify)
    assert not await policy.is_reused("Fresh#4dd", history, hasher.verify)
    assert not await policy.is_reused("Middle#2b", [], hasher.verify)


async def test_reuse_check_stops_at_first_match():
    calls = []

    async def verify(candidate, password_hash):
        calls.append(password_hash)
        return password_hash == "h1"

    assert await PasswordPolicy().is_reused("x", ["h1", "h2", "h3"], verify)
    assert calls == ["h1"]
