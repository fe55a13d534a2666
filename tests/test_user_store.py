"""Unit tests for auth/store.py -- users and invite codes.

Covers:
- create_user()/get_by_*() round trip, e-mail normalisation, role list storage
- UNIQUE e-mail and mobile raise IntegrityError
- update_password()/update_roles()/update_last_login()
- create_invite_code(): 8-char URL-safe codes, unique per call, unknown owner rejected
- list_invite_codes(): newest first, filtered by owner
"""

import re

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import UserStore, generate_invite_code


@pytest.fixture
def store():
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


def _user(email: str = "Trader@Example.com", mobile: str = "9876543210", roles=None) -> User:
    return User(
        email=email,
        name="  Trader  ",
        mobile=mobile,
        roles=roles or ["user"],
        hashed_password="hash",
    )


class TestUsers:
    def test_create_and_fetch(self, store: UserStore) -> None:
        uid = store.create_user(_user(roles=["agent", "user"]))
        user = store.get_by_id(uid)
        assert user is not None
        assert user.email == "trader@example.com"
        assert user.name == "Trader"
        assert user.roles == ["agent", "user"]
        assert user.role == "agent"
        assert user.created_at
        assert user.is_active is True

    def test_lookup_by_email_ignores_case(self, store: UserStore) -> None:
        store.create_user(_user())
        assert store.get_by_email("TRADER@example.COM") is not None

    def test_lookup_by_mobile(self, store: UserStore) -> None:
        uid = store.create_user(_user())
        assert store.get_by_mobile("9876543210").id == uid

    def test_missing_user_is_none(self, store: UserStore) -> None:
        assert store.get_by_id(999) is None
        assert store.get_by_email("nobody@example.com") is None

    def test_duplicate_email_rejected(self, store: UserStore) -> None:
        store.create_user(_user())
        with pytest.raises(IntegrityError):
            store.create_user(_user(email="trader@example.com", mobile="1111111111"))

    def test_duplicate_mobile_rejected(self, store: UserStore) -> None:
        store.create_user(_user())
        with pytest.raises(IntegrityError):
            store.create_user(_user(email="other@example.com"))

    def test_updates(self, store: UserStore) -> None:
        uid = store.create_user(_user())
        assert store.update_password(uid, "new-hash") is True
        assert store.update_roles(uid, ["manager"]) is True
        store.update_last_login(uid)
        user = store.get_by_id(uid)
        assert user.hashed_password == "new-hash"
        assert user.role == "manager"
        assert user.last_login is not None

    def test_update_unknown_user_returns_false(self, store: UserStore) -> None:
        assert store.update_password(404, "x") is False

    def test_counts(self, store: UserStore) -> None:
        assert store.has_users() is False
        store.create_user(_user())
        assert store.has_users() is True
        assert store.count_users() == 1


class TestInviteCodes:
    def test_generated_code_shape(self) -> None:
        code = generate_invite_code()
        assert re.fullmatch(r"[A-Za-z0-9_-]{8}", code)

    def test_create_invite_code(self, store: UserStore) -> None:
        uid = store.create_user(_user())
        invite = store.create_invite_code(uid)
        assert invite.owner_id == uid
        assert len(invite.code) == 8
        fetched = store.get_invite_code(invite.code)
        assert fetched is not None
        assert fetched.owner_id == uid

    def test_codes_are_unique(self, store: UserStore) -> None:
        uid = store.create_user(_user())
        codes = {store.create_invite_code(uid).code for _ in range(20)}
        assert len(codes) == 20

    def test_unknown_owner_rejected(self, store: UserStore) -> None:
        with pytest.raises(IntegrityError):
            store.create_invite_code(12345)

    def test_list_by_owner_newest_first(self, store: UserStore) -> None:
        a = store.create_user(_user())
        b = store.create_user(_user(email="b@example.com", mobile="1231231234"))
        first = store.create_invite_code(a)
        second = store.create_invite_code(a)
        store.create_invite_code(b)
        codes = [c.code for c in store.list_invite_codes(a)]
        assert codes == [second.code, first.code]
        assert len(store.list_invite_codes()) == 3

    def test_unknown_code_is_none(self, store: UserStore) -> None:
        assert store.get_invite_code("nope1234") is None
