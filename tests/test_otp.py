"""Unit tests for auth/otp.py -- OTP primitives and the issue/check lifecycle.

Covers:
- generate_otp(): 6 decimal digits in [100000, 999999]
- hash_otp(): salted, so two hashes of one code differ
- verify_otp_hash(): True for the matching code, False for another code,
  False (never raises) for malformed, empty or None hashes
- issue_otp()/check_otp(): not found, expired, invalid, success, replacement
  of a pending code, single-use consumption
"""

from datetime import datetime, timedelta, timezone

import bcrypt
import pytest

from auth.otp import (
    OTP_EXPIRED,
    OTP_INVALID,
    OTP_MAX,
    OTP_MIN,
    OTP_NOT_FOUND,
    check_otp,
    generate_otp,
    hash_otp,
    issue_otp,
    verify_otp_hash,
)
from auth.store import UserStore

# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


class TestGenerateOtp:
    def test_codes_are_six_digits_in_range(self) -> None:
        for _ in range(500):
            code = generate_otp()
            assert len(code) == 6
            assert code.isdigit()
            assert OTP_MIN <= int(code) <= OTP_MAX

    def test_codes_vary(self) -> None:
        codes = {generate_otp() for _ in range(50)}
        assert len(codes) > 1


class TestHashOtp:
    def test_hash_is_not_plaintext(self) -> None:
        code = "123456"
        assert code not in hash_otp(code)

    def test_same_code_hashes_differently(self) -> None:
        assert hash_otp("654321") != hash_otp("654321")

    def test_rounds_are_embedded_in_hash(self) -> None:
        # bcrypt hashes look like $2b$<cost>$...
        assert hash_otp("111111", rounds=5).split("$")[2] == "05"


class TestVerifyOtpHash:
    def test_matching_code_verifies(self) -> None:
        code = generate_otp()
        assert verify_otp_hash(code, hash_otp(code)) is True

    def test_other_code_does_not_verify(self) -> None:
        assert verify_otp_hash("111111", hash_otp("222222")) is False

    @pytest.mark.parametrize("bad_hash", ["", "not-a-hash", "$2b$10$short", None])
    def test_malformed_hash_fails_closed(self, bad_hash) -> None:
        assert verify_otp_hash("123456", bad_hash) is False

    def test_hash_from_default_cost_verifies(self) -> None:
        legacy = bcrypt.hashpw(b"999999", bcrypt.gensalt(rounds=10)).decode()
        assert verify_otp_hash("999999", legacy) is True


# ---------------------------------------------------------------------------
# Lifecycle over a real store
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


class TestOtpLifecycle:
    def test_check_without_issue_is_not_found(self, store: UserStore) -> None:
        assert check_otp(store, "a@example.com", "register", "123456") == OTP_NOT_FOUND

    def test_issue_then_check_succeeds(self, store: UserStore) -> None:
        code = issue_otp(store, "a@example.com", "register")
        assert check_otp(store, "a@example.com", "register", code) is None

    def test_verified_code_cannot_be_checked_again(self, store: UserStore) -> None:
        code = issue_otp(store, "a@example.com", "register")
        assert check_otp(store, "a@example.com", "register", code) is None
        assert check_otp(store, "a@example.com", "register", code) == OTP_NOT_FOUND

    def test_wrong_code_is_invalid(self, store: UserStore) -> None:
        code = issue_otp(store, "a@example.com", "register")
        wrong = "100000" if code != "100000" else "100001"
        assert check_otp(store, "a@example.com", "register", wrong) == OTP_INVALID

    def test_expired_code_is_expired(self, store: UserStore) -> None:
        code = issue_otp(store, "a@example.com", "register")
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        assert check_otp(store, "a@example.com", "register", code, now=later) == OTP_EXPIRED

    def test_purpose_is_part_of_the_key(self, store: UserStore) -> None:
        code = issue_otp(store, "a@example.com", "register")
        assert check_otp(store, "a@example.com", "reset_password", code) == OTP_NOT_FOUND

    def test_email_lookup_is_case_insensitive(self, store: UserStore) -> None:
        code = issue_otp(store, "Mixed@Example.com", "register")
        assert check_otp(store, "mixed@example.com", "register", code) is None

    def test_reissue_replaces_pending_code(self, store: UserStore) -> None:
        first = issue_otp(store, "a@example.com", "register")
        second = issue_otp(store, "a@example.com", "register")
        if first != second:
            assert check_otp(store, "a@example.com", "register", first) == OTP_INVALID
        assert check_otp(store, "a@example.com", "register", second) is None

    def test_verified_code_is_consumed_once(self, store: UserStore) -> None:
        code = issue_otp(store, "a@example.com", "reset_password")
        assert check_otp(store, "a@example.com", "reset_password", code) is None
        assert store.consume_verified_otp("a@example.com", "reset_password") is True
        assert store.consume_verified_otp("a@example.com", "reset_password") is False

    def test_unverified_code_cannot_be_consumed(self, store: UserStore) -> None:
        issue_otp(store, "a@example.com", "reset_password")
        assert store.consume_verified_otp("a@example.com", "reset_password") is False

    def test_purge_removes_only_expired(self, store: UserStore) -> None:
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        issue_otp(store, "old@example.com", "register", now=past)
        issue_otp(store, "new@example.com", "register")
        assert store.purge_expired_otps() == 1
        assert store.get_pending_otp("old@example.com", "register") is None
        assert store.get_pending_otp("new@example.com", "register") is not None
