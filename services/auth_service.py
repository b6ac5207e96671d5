"""
services/auth_service.py -- Registration, login and logout.

Login failures are reported with the same InvalidCredentials error whether the
email is unknown or the password is wrong; each attempt is counted in the
auth_successful / auth_failed metrics.
"""

from __future__ import annotations

import logging

from auth.models import User, UserCandidate
from auth.sessions import TokenService
from auth.store import UserStore
from core.errors import InvalidCredentials

logger = logging.getLogger("pizza.auth")


class AuthService:
    def __init__(self, user_store: UserStore, tokens: TokenService, telemetry) -> None:
        self.user_store = user_store
        self.tokens = tokens
        self.telemetry = telemetry

    def register(self, candidate: UserCandidate) -> tuple[User, str]:
        """Create the user (diner by default) and log them in."""
        user = self.user_store.add_user(candidate)
        token = self.tokens.issue(user)
        self.telemetry.track_active_user(user.id)
        logger.info("Registered user id=%s", user.id)
        return user, token

    def login(self, email: str, password: str) -> tuple[User, str]:
        try:
            user = self.user_store.get_user(email, password)
        except InvalidCredentials:
            self.telemetry.auth_attempt(False)
            raise
        token = self.tokens.issue(user)
        self.telemetry.auth_attempt(True)
        self.telemetry.track_active_user(user.id)
        return user, token

    def logout(self, token: str) -> None:
        self.tokens.revoke(token)
