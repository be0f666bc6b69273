"""
Tests for password hashing, JWT tokens and the in-memory rate limiter.
"""
from giftcircle.core.rate_limit import InMemoryRateLimiter
from giftcircle.core.security import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    get_password_hash,
    user_id_from_token,
    verify_password,
)


class TestPasswordHashing:
    """bcrypt hashing."""

    def test_hashes_are_salted(self):
        password = "MySecurePassword123!"
        hash1 = get_password_hash(password)
        hash2 = get_password_hash(password)

        assert hash1 != hash2
        assert hash1 != password

    def test_verify_password(self):
        password = "MySecurePassword123!"
        hashed = get_password_hash(password)

        assert verify_password(password, hashed) is True
        assert verify_password("WrongPassword", hashed) is False
        assert verify_password(password.upper(), hashed) is False

    def test_bcrypt_format(self):
        assert get_password_hash("test123").startswith("$2b$")


class TestTokens:
    """Access and refresh tokens are typed and not interchangeable."""

    def test_access_token_roundtrip(self):
        payload = decode_access_token(create_access_token("42"))
        assert payload["sub"] == "42"
        assert payload["type"] == "access"
        assert "jti" in payload

    def test_refresh_token_is_not_access_token(self):
        refresh = create_refresh_token("42")
        assert decode_access_token(refresh) is None
        assert decode_refresh_token(refresh)["sub"] == "42"

    def test_expired_token_rejected(self):
        assert decode_access_token(create_access_token("42", expires_delta_minutes=-1)) is None

    def test_garbage_token_rejected(self):
        assert decode_access_token("not.a.token") is None

    def test_user_id_from_token(self):
        assert user_id_from_token(create_access_token("42")) == 42
        assert user_id_from_token(create_access_token("abc")) is None
        assert user_id_from_token(None) is None


class TestRateLimiter:
    """Sliding-window limiter."""

    def test_blocks_after_limit(self):
        limiter = InMemoryRateLimiter()
        assert limiter.is_allowed("k", 2, 60) == (True, 0)
        assert limiter.is_allowed("k", 2, 60) == (True, 0)
        allowed, retry_after = limiter.is_allowed("k", 2, 60)
        assert allowed is False
        assert 1 <= retry_after <= 61

    def test_keys_are_independent(self):
        limiter = InMemoryRateLimiter()
        limiter.is_allowed("a", 1, 60)
        assert limiter.is_allowed("a", 1, 60)[0] is False
        assert limiter.is_allowed("b", 1, 60)[0] is True

    def test_reset(self):
        limiter = InMemoryRateLimiter()
        limiter.is_allowed("a", 1, 60)
        limiter.reset("a")
        assert limiter.is_allowed("a", 1, 60)[0] is True
