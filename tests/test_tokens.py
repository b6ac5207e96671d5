"""Unit tests for auth/tokens.py -- password hashing, JWT encode/decode, signatures.

Covers:
- token_signature() for well-formed, short, empty and single-part tokens
- hash_password() salts every call; verify_password() matches and mismatches
- verify_password() never raises on a malformed digest
- hash_password() counts the bcrypt limit in UTF-8 bytes, not characters
- decode_access_token() rejects tampered and expired tokens
- two tokens issued back to back never share a signature
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.tokens import (
    create_access_token,
    decode_access_token,
    hash_password,
    token_signature,
    verify_password,
)
from core.config import get_settings
from core.errors import InvalidPassword


class TestTokenSignature:
    @pytest.mark.parametrize(
        "token, expected",
        [
            ("a.b.c", "c"),
            ("header.payload.sig-nature_1", "sig-nature_1"),
            ("a.b.c.d", "d"),
            ("a.b", ""),
            ("", ""),
            ("singlepart", ""),
            (None, ""),
        ],
    )
    def test_signature_segment(self, token, expected) -> None:
        assert token_signature(token) == expected


class TestPasswordHashing:
    def test_same_password_hashes_differently(self) -> None:
        """bcrypt salts per call, so two digests of one password differ."""
        first = hash_password("secret")
        second = hash_password("secret")
        assert first != second
        assert verify_password("secret", first)
        assert verify_password("secret", second)

    def test_limit_counts_bytes(self) -> None:
        assert verify_password("a" * 72, hash_password("a" * 72))
        with pytest.raises(InvalidPassword):
            hash_password("\u00e9" * 40)

    def test_wrong_password_does_not_verify(self) -> None:
        assert not verify_password("wrong", hash_password("secret"))

    def test_malformed_digest_is_a_mismatch(self) -> None:
        assert verify_password("secret", "not-a-bcrypt-hash") is False
        assert verify_password("secret", "") is False


class TestJwt:
    def test_round_trip_claims(self) -> None:
        token = create_access_token(7, "a@jwt.com")
        payload = decode_access_token(token)
        assert payload is not None
        assert payload["user_id"] == 7
        assert payload["sub"] == "a@jwt.com"
        assert "jti" in payload

    def test_tampered_signature_rejected(self) -> None:
        token = create_access_token(7, "a@jwt.com")
        other = create_access_token(7, "a@jwt.com")
        head = token.rsplit(".", 1)[0]
        assert decode_access_token(f"{head}.{token_signature(other)}") is None

    def test_tampered_payload_rejected(self) -> None:
        token = create_access_token(7, "a@jwt.com")
        other = create_access_token(8, "b@jwt.com")
        header, _payload, sig = token.split(".")
        forged = f"{header}.{other.split('.')[1]}.{sig}"
        assert decode_access_token(forged) is None

    def test_expired_token_rejected(self) -> None:
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {"sub": "a@jwt.com", "user_id": 7, "iat": past, "exp": past + timedelta(hours=1)},
            get_settings().secret_key,
            algorithm="HS256",
        )
        assert decode_access_token(token) is None

    def test_token_signed_with_other_key_rejected(self) -> None:
        token = jwt.encode({"sub": "a@jwt.com", "user_id": 7}, "x" * 40, algorithm="HS256")
        assert decode_access_token(token) is None

    def test_signatures_unique_within_one_second(self) -> None:
        first = create_access_token(7, "a@jwt.com")
        second = create_access_token(7, "a@jwt.com")
        assert token_signature(first) != token_signature(second)
