"""Unit tests for auth/entitlements.py -- the authorization policy table.

Each row of the table is exercised for an admin, the owning user, an unrelated
user and an anonymous caller.
"""

import pytest

from auth.entitlements import Operation, authorize, is_allowed, is_role
from auth.models import Admin, Diner, Franchisee, Role, User
from core.errors import Forbidden
from database.models import Franchise, FranchiseAdmin

ADMIN = User(id=1, name="Admin", email="a@jwt.com", roles=[Diner(), Admin()])
DINER = User(id=2, name="Diner", email="d@jwt.com", roles=[Diner()])
OWNER = User(id=3, name="Owner", email="f@jwt.com", roles=[Diner(), Franchisee(object_id=10)])

FRANCHISE = Franchise(id=10, name="pizzaPocket", admins=[FranchiseAdmin(id=3, name="Owner", email="f@jwt.com")])

ADMIN_ONLY = [
    Operation.MANAGE_MENU,
    Operation.CREATE_FRANCHISE,
    Operation.DELETE_FRANCHISE,
    Operation.LIST_USERS,
    Operation.ASSIGN_ROLES,
    Operation.VIEW_FRANCHISE_DETAIL,
]


class TestIsRole:
    def test_unscoped(self) -> None:
        assert is_role(ADMIN, Role.Admin)
        assert not is_role(DINER, Role.Admin)
        assert not is_role(None, Role.Diner)

    def test_scoped_franchisee(self) -> None:
        assert is_role(OWNER, Role.Franchisee)
        assert is_role(OWNER, Role.Franchisee, 10)
        assert not is_role(OWNER, Role.Franchisee, 11)


class TestPolicyTable:
    @pytest.mark.parametrize("operation", ADMIN_ONLY)
    def test_admin_only_operations(self, operation) -> None:
        assert is_allowed(ADMIN, operation)
        assert not is_allowed(DINER, operation)
        assert not is_allowed(OWNER, operation)

    @pytest.mark.parametrize("operation", list(Operation))
    def test_anonymous_allowed_nothing(self, operation) -> None:
        assert not is_allowed(None, operation, user_id=2, franchise=FRANCHISE)

    def test_manage_store(self) -> None:
        assert is_allowed(ADMIN, Operation.MANAGE_STORE, franchise=FRANCHISE)
        assert is_allowed(OWNER, Operation.MANAGE_STORE, franchise=FRANCHISE)
        assert not is_allowed(DINER, Operation.MANAGE_STORE, franchise=FRANCHISE)

    def test_manage_store_needs_listing_not_just_grant(self) -> None:
        """The franchisee grant alone is not enough; the caller must be in F.admins."""
        other = Franchise(id=10, name="pizzaPocket", admins=[])
        assert not is_allowed(OWNER, Operation.MANAGE_STORE, franchise=other)

    @pytest.mark.parametrize("operation", [Operation.MODIFY_USER, Operation.VIEW_USER_FRANCHISES])
    def test_self_or_admin(self, operation) -> None:
        assert is_allowed(DINER, operation, user_id=DINER.id)
        assert is_allowed(ADMIN, operation, user_id=DINER.id)
        assert not is_allowed(OWNER, operation, user_id=DINER.id)


class TestAuthorize:
    def test_raises_forbidden_with_message(self) -> None:
        with pytest.raises(Forbidden, match="unable to add menu item") as exc:
            authorize(DINER, Operation.MANAGE_MENU, "unable to add menu item")
        assert exc.value.status_code == 403

    def test_default_message(self) -> None:
        with pytest.raises(Forbidden, match="unauthorized"):
            authorize(DINER, Operation.MODIFY_USER, user_id=ADMIN.id)

    def test_allowed_returns_none(self) -> None:
        assert authorize(ADMIN, Operation.MANAGE_MENU) is None
