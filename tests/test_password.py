"""Tests for password hashing and the password policy."""

import pytest

from models.verification_token import VerificationToken
from security import recovery
from security.otp import otp_manager
from security.password import hash_password, verify_password
from security.password_policy import validate_password


class TestHashing:
    def test_round_trip(self, app):
        hashed = hash_password("Secret123")
        assert verify_password("Secret123", hashed)
        assert not verify_password("Secret124", hashed)

    def test_hash_refuses_more_than_72_bytes(self, app):
        with pytest.raises(ValueError):
            hash_password("é" * 37)

    @pytest.mark.parametrize("candidate", [None, "", 12345678, b"Secret123", ["Secret123"]])
    def test_verify_rejects_non_strings(self, app, candidate):
        assert verify_password(candidate, hash_password("Secret123")) is False

    def test_verify_overlong_is_a_mismatch(self, app, caplog):
        hashed = hash_password("a1" * 36)
        assert verify_password("a1" * 36 + "x", hashed) is False
        assert "not a valid bcrypt hash" not in caplog.text

    def test_malformed_stored_hash(self, app):
        assert verify_password("Secret123", "not-a-hash") is False


class TestPolicy:
    def test_accepts_72_ascii_bytes(self, app):
        assert validate_password("a1" * 36) == (True, [])

    def test_byte_length_counts_multibyte_characters(self, app):
        valid, errors = validate_password("ü" * 40 + "1")
        assert not valid
        assert errors == ["Password must be at most 72 bytes"]

    def test_non_string(self, app):
        assert validate_password(12345678) == (False, ["Password must be a string"])


class TestResetPasswordGuard:
    def test_rejected_password_leaves_code_live(self, make_user, mailbox):
        make_user(email="a@x.com")
        otp = otp_manager()
        recovery.request_password_reset("a@x.com", otp)

        result = recovery.reset_password("a@x.com", mailbox[0]["code"], "b2" * 40, otp)

        assert result.error == recovery.INVALID_PASSWORD
        assert VerificationToken.query.filter_by(email="a@x.com", used=False).count() == 1
