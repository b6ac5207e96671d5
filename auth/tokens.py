"""
auth/tokens.py -- Password hashing, JWT encode/decode, and token signatures.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, sub (email), iat, exp and a random jti. The jti keeps two
       tokens issued to the same user in the same second from sharing a
       signature, which is the key of the auth_tokens revocation table.
       decode_access_token() returns None on any failure -- the caller turns
       that into "not logged in".

  Passwords: bcrypt, used directly (no passlib wrapper). gensalt() gives a
       fresh salt per call, so hashing the same password twice yields two
       different digests. The cost factor comes from Settings.bcrypt_rounds.
       _DUMMY_HASH enables timing equalization in UserStore.get_user() so
       response time does not reveal whether an email is registered.

  Signatures: token_signature() extracts the trailing segment of a JWT. Only
       that segment is persisted server-side; a full token never is.

Layer rule: no imports from api/, database/, or services/. Import from core/
is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings
from core.errors import CredentialBackendError, InvalidPassword

logger = logging.getLogger("pizza.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# bcrypt refuses anything longer, counted in bytes after UTF-8 encoding.
PASSWORD_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises InvalidPassword for more than PASSWORD_MAX_BYTES bytes, a client
    error. Any other backend failure surfaces as CredentialBackendError, an
    internal error rather than an auth failure.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > PASSWORD_MAX_BYTES:
        raise InvalidPassword()
    try:
        digest = bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=_settings.bcrypt_rounds))
    except (ValueError, TypeError) as exc:
        logger.error("bcrypt hashing failed: %s", exc)
        raise CredentialBackendError() from exc
    return digest.decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Never raises on mismatch: a malformed or empty digest is a mismatch too.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("pizza_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt verification against a dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, email: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for a user.

    Args:
        user_id:        Numeric user ID stored in the DB.
        email:          Stored as the subject claim.
        expire_seconds: Token lifetime. 0 (default) uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": email,
        "user_id": user_id,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Signature, algorithm and expiry are all checked by jose.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload:
        return None
    return payload


def token_signature(token: Optional[str]) -> str:
    """Return the signature segment of a header.payload.signature token.

    That is the text after the last "." when the token has at least two dots,
    and "" otherwise. An empty signature never matches a stored row.

        token_signature("a.b.c") == "c"
        token_signature("a.b")   == ""
        token_signature("")      == ""
    """
    if not token or token.count(".") < 2:
        return ""
    return token.rsplit(".", 1)[1]
