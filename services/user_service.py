"""
services/user_service.py -- Profile updates, deletion and the admin user listing.
"""

from __future__ import annotations

from typing import Optional

from auth.entitlements import Operation, authorize
from auth.models import RoleRequest, User
from auth.sessions import TokenService
from auth.store import UserStore


class UserService:
    def __init__(self, user_store: UserStore, tokens: TokenService) -> None:
        self.user_store = user_store
        self.tokens = tokens

    def update(
        self,
        caller: User,
        user_id: int,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        roles: Optional[list[RoleRequest]] = None,
    ) -> tuple[User, str]:
        """Update a user and return it with a freshly issued token.

        Users may update themselves; admins may update anyone. Changing roles
        is admin-only.
        """
        authorize(caller, Operation.MODIFY_USER, user_id=user_id)
        if roles is not None:
            authorize(caller, Operation.ASSIGN_ROLES)
        updated = self.user_store.update_user(user_id, name=name, email=email, password=password, roles=roles)
        return updated, self.tokens.issue(updated)

    def delete(self, caller: User, user_id: int) -> None:
        authorize(caller, Operation.MODIFY_USER, user_id=user_id)
        self.user_store.delete_user(user_id)

    def list(self, caller: User, page: int = 1, limit: int = 10, name_filter: str = "*") -> tuple[list[User], bool]:
        authorize(caller, Operation.LIST_USERS)
        return self.user_store.list_users(page, limit, name_filter)
