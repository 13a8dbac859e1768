"""Tests for password hashing, JWT helpers and the rate limiter."""

from unittest.mock import patch

import pytest

from medbank.utils.rate_limiter import RateLimiter
from medbank.utils.security import (
    create_access_token,
    decode_access_token,
    generate_verification_code,
    hash_password,
    validate_password_strength,
    verify_password,
)

SECRET = "unit-test-secret"


class TestPasswords:
    def test_hash_roundtrip(self):
        hashed = hash_password("Secur3pass")
        assert hashed != "Secur3pass"
        assert verify_password("Secur3pass", hashed)
        assert not verify_password("wrong-pass1", hashed)

    def test_hashes_are_salted(self):
        assert hash_password("Secur3pass") != hash_password("Secur3pass")

    def test_strength_accepts_good_password(self):
        validate_password_strength("abcdefg1")

    @pytest.mark.parametrize("password,fragment", [
        ("short1", "at least 8 characters"),
        ("12345678", "a letter"),
        ("abcdefgh", "a digit"),
    ])
    def test_strength_rejects(self, password, fragment):
        with pytest.raises(ValueError, match=fragment):
            validate_password_strength(password)

    def test_custom_min_length(self):
        with pytest.raises(ValueError):
            validate_password_strength("abcdefg1", min_length=12)


class TestTokens:
    def test_roundtrip(self):
        token = create_access_token({"sub": "42", "role": "student"}, SECRET)
        payload = decode_access_token(token, SECRET)
        assert payload["sub"] == "42"
        assert payload["role"] == "student"
        assert "exp" in payload

    def test_wrong_secret(self):
        token = create_access_token({"sub": "42"}, SECRET)
        assert decode_access_token(token, "other-secret") is None

    def test_expired(self):
        token = create_access_token({"sub": "42"}, SECRET, expires_minutes=-1)
        assert decode_access_token(token, SECRET) is None

    def test_garbage(self):
        assert decode_access_token("not-a-jwt", SECRET) is None


def test_verification_code_shape():
    code = generate_verification_code()
    assert len(code) == 6
    assert code.isdigit()
    assert len(generate_verification_code(8)) == 8


class TestRateLimiter:
    def test_limits_after_max_attempts(self):
        limiter = RateLimiter(max_attempts=3, window_seconds=60)
        for _ in range(3):
            assert not limiter.is_rate_limited("1.2.3.4")
            limiter.record_attempt("1.2.3.4")
        assert limiter.is_rate_limited("1.2.3.4")
        assert limiter.remaining_attempts("1.2.3.4") == 0
        assert not limiter.is_rate_limited("5.6.7.8")

    def test_window_expiry(self):
        limiter = RateLimiter(max_attempts=1, window_seconds=60)
        with patch("medbank.utils.rate_limiter.time.time", return_value=1000.0):
            limiter.record_attempt("k")
            assert limiter.is_rate_limited("k")
        with patch("medbank.utils.rate_limiter.time.time", return_value=1061.0):
            assert not limiter.is_rate_limited("k")
            assert limiter.remaining_attempts("k") == 1

    def test_reset(self):
        limiter = RateLimiter(max_attempts=1, window_seconds=60)
        limiter.record_attempt("k")
        limiter.reset("k")
        assert not limiter.is_rate_limited("k")
