# tests/test_users.py
from __future__ import annotations

import pytest

from taskhub.models.base import InvalidOperationError, NotFoundError, ValidationError
from taskhub.models.user import AccessContext, ApplicationUser, UserRole


def _user(username: str, email: str | None = None) -> ApplicationUser:
    return ApplicationUser(
        username=username,
        email=email or f"{username}@example.com",
        first_name="Grace",
        last_name="Hopper",
    )


def test_create_and_fetch_user(users):
    created = users.create_user(_user("grace"), [UserRole.USER])

    fetched = users.get_user(created.id)
    assert fetched.username == "grace"
    assert fetched.get_full_name() == "Grace Hopper"
    assert users.get_roles(created.id) == {UserRole.USER}
    assert [u.id for u in users.list_users()] == [created.id]


def test_duplicate_identity_is_rejected(users):
    users.create_user(_user("grace"))
    with pytest.raises(InvalidOperationError):
        users.create_user(_user("grace", "other@example.com"))
    with pytest.raises(InvalidOperationError):
        users.create_user(_user("hopper", "grace@example.com"))


def test_invalid_email_is_rejected(users):
    with pytest.raises(ValidationError):
        users.create_user(_user("grace", "not-an-email"))


def test_roles_and_access_context(users):
    user = users.create_user(_user("grace"))
    assert users.access_context(user.id) == AccessContext(user.id, is_admin=False)

    users.add_to_role(user.id, UserRole.ADMIN)
    users.add_to_role(user.id, UserRole.ADMIN)
    assert users.is_in_role(user.id, UserRole.ADMIN)
    assert users.access_context(user.id).is_admin

    with pytest.raises(NotFoundError):
        users.access_context("ghost")
    with pytest.raises(NotFoundError):
        users.add_to_role("ghost", UserRole.USER)


def test_access_context_capability():
    assert AccessContext("a").can_act_on({"a", "b"})
    assert not AccessContext("c").can_act_on({"a", "b"})
    assert AccessContext("c", is_admin=True).can_act_on(set())


def test_seed_defaults_is_repeatable(users):
    created = users.seed_defaults()
    assert {u.username for u in created} == {"test_admin", "test_client"}
    assert users.seed_defaults() == []

    by_name = {u.username: u for u in users.list_users()}
    assert users.is_in_role(by_name["test_admin"].id, UserRole.ADMIN)
    assert users.get_roles(by_name["test_client"].id) == {UserRole.CLIENT}
