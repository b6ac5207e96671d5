"""
auth/sessions.py -- Token issuance, validation and revocation.

A token is valid only while BOTH hold:
  1. it decodes (signature and expiry checked by jose), and
  2. its signature segment is present in the auth_tokens revocation table.

issue() records the signature before returning the token; revoke() deletes it.
A revoked token therefore fails is_valid() even though it would still decode.

Layer rule: no imports from api/ or services/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, decode_access_token

logger = logging.getLogger("pizza.auth")


class TokenService:
    def __init__(self, user_store: UserStore, expire_seconds: int = 0) -> None:
        self.user_store = user_store
        self.expire_seconds = expire_seconds

    def issue(self, user: User) -> str:
        """Sign a token for user and record it as logged in.

        If recording the signature fails the error propagates and no token is
        handed out.
        """
        token = create_access_token(user.id, user.email, self.expire_seconds)
        self.user_store.store_token(user.id, token)
        return token

    def is_valid(self, token: Optional[str]) -> bool:
        if not token:
            return False
        if decode_access_token(token) is None:
            return False
        return self.user_store.is_logged_in(token)

    def revoke(self, token: Optional[str]) -> None:
        """Remove the token from the logged-in set. Revoking twice is a no-op."""
        if token:
            self.user_store.delete_token(token)

    def authenticate(self, token: Optional[str]) -> Optional[User]:
        """Resolve a bearer token to its user, or None.

        None for a missing, tampered, expired or revoked token, and for a token
        whose user has since been deleted. Roles are read from the store, not
        from the token, so role changes take effect immediately.
        """
        if not self.is_valid(token):
            return None
        payload = decode_access_token(token)
        if payload is None:
            return None
        return self.user_store.get_user_by_id(int(payload["user_id"]))

    def purge_expired_tokens(self, lifetime_seconds: int) -> int:
        """Drop revocation rows older than lifetime_seconds.

        Those tokens can no longer decode, so the rows are dead weight.
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(seconds=lifetime_seconds)).isoformat()
        removed = self.user_store.purge_tokens(cutoff)
        if removed:
            logger.info("Purged %d expired session token(s)", removed)
        return removed
