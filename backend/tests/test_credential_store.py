"""Tests for the credential store and its role encoding."""

import pytest
from dental_auth.core.exceptions import ValidationError
from dental_auth.core.roles import Role
from dental_auth.models.auth import User
from dental_auth.services.credential_store import parse_roles, serialize_roles
from sqlalchemy import func, select


def test_parse_roles():
    assert parse_roles("admin,dentist") == {Role.ADMIN, Role.DENTIST}
    assert parse_roles(" secretary , ") == {Role.SECRETARY}
    assert parse_roles("") == set()
    assert parse_roles(None) == set()


def test_parse_roles_drops_unknown_names():
    assert parse_roles("admin,janitor") == {Role.ADMIN}


def test_serialize_roles_is_sorted_and_deduplicated():
    assert serialize_roles([Role.SECRETARY, Role.ADMIN, Role.ADMIN]) == "admin,secretary"
    assert serialize_roles([]) == ""


async def test_roles_stored_as_text_and_loaded_as_set(app, create_user):
    user = await create_user("front@example.com", roles=(Role.SECRETARY, Role.DENTIST))
    assert user.roles == {Role.SECRETARY, Role.DENTIST}

    async with app.state.session_factory() as db:
        stored = (await db.execute(select(User.roles).where(User.id == user.id))).scalar_one()
    assert stored == "dentist,secretary"


async def test_soft_deleted_user_is_invisible(app, create_user):
    store = app.state.store
    user = await create_user()
    await store.soft_delete(user.id)

    assert await store.get_by_email("doc@example.com") is None
    assert await store.get_by_id(user.id) is None
    deleted = await store.get_by_email("doc@example.com", include_deleted=True)
    assert deleted.deleted_at is not None


async def test_password_history_newest_first(app, auth, create_user):
    store = app.state.store
    user = await create_user()
    first = (await store.recent_password_hashes(user.id, 3))[0]

    new_hash = await auth.hasher.hash("Another#2pw")
    await store.update_password(user.id, new_hash)

    assert await store.recent_password_hashes(user.id, 3) == [new_hash, first]
    assert await store.recent_password_hashes(user.id, 1) == [new_hash]
    assert await store.recent_password_hashes(user.id, 0) == []


async def test_duplicate_email_insert_is_a_validation_error(app, create_user):
    await create_user()

    with pytest.raises(ValidationError):
        await app.state.store.create_user("doc@example.com", "hash")

    async with app.state.session_factory() as db:
        count = (await db.execute(select(func.count(User.id)).where(User.email == "doc@example.com"))).scalar_one()
    assert count == 1
