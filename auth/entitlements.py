"""
auth/entitlements.py -- Role checks and the single authorization policy table.

is_role() only reports raw grants. Policy composition ("admin OR owner of this
object") happens in exactly one place: the _POLICIES table below. Services call
authorize() / is_allowed() with an Operation; none of them re-derive an
admin-or-owner rule on their own.

Policy table:

  Operation               Allowed iff
  ---------------------   ------------------------------------------------
  MANAGE_MENU             caller has Admin
  CREATE_FRANCHISE        caller has Admin
  DELETE_FRANCHISE        caller has Admin
  MANAGE_STORE            caller has Admin, or caller is listed in F.admins
  VIEW_USER_FRANCHISES    caller.id == target user id, or caller has Admin
  MODIFY_USER             caller.id == target user id, or caller has Admin
  LIST_USERS              caller has Admin
  ASSIGN_ROLES            caller has Admin
  VIEW_FRANCHISE_DETAIL   caller has Admin (admins and revenue in listings)

An anonymous caller (None) is allowed nothing.

Layer rule: no imports from api/, database/, or services/.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional

from auth.models import Role, User
from core.errors import Forbidden


class Operation(str, Enum):
    MANAGE_MENU = "manage_menu"
    CREATE_FRANCHISE = "create_franchise"
    DELETE_FRANCHISE = "delete_franchise"
    MANAGE_STORE = "manage_store"
    VIEW_USER_FRANCHISES = "view_user_franchises"
    MODIFY_USER = "modify_user"
    LIST_USERS = "list_users"
    ASSIGN_ROLES = "assign_roles"
    VIEW_FRANCHISE_DETAIL = "view_franchise_detail"


def is_role(user: Optional[User], role: Role, object_id: Optional[int] = None) -> bool:
    """True if the user holds a grant for role (scoped to object_id when given)."""
    if user is None:
        return False
    return user.is_role(role, object_id)


def _is_admin(user: User, **_ctx) -> bool:
    return is_role(user, Role.Admin)


def _is_admin_or_self(user: User, user_id: Optional[int] = None, **_ctx) -> bool:
    return is_role(user, Role.Admin) or (user_id is not None and user.id == user_id)


def _is_admin_or_franchise_admin(user: User, franchise=None, **_ctx) -> bool:
    if is_role(user, Role.Admin):
        return True
    if franchise is None:
        return False
    return any(admin.id == user.id for admin in franchise.admins)


_POLICIES: dict[Operation, Callable[..., bool]] = {
    Operation.MANAGE_MENU: _is_admin,
    Operation.CREATE_FRANCHISE: _is_admin,
    Operation.DELETE_FRANCHISE: _is_admin,
    Operation.MANAGE_STORE: _is_admin_or_franchise_admin,
    Operation.VIEW_USER_FRANCHISES: _is_admin_or_self,
    Operation.MODIFY_USER: _is_admin_or_self,
    Operation.LIST_USERS: _is_admin,
    Operation.ASSIGN_ROLES: _is_admin,
    Operation.VIEW_FRANCHISE_DETAIL: _is_admin,
}


def is_allowed(user: Optional[User], operation: Operation, **ctx) -> bool:
    """Evaluate the policy for operation.

    Context keywords by operation:
      MANAGE_STORE:                      franchise=<Franchise with admins loaded>
      VIEW_USER_FRANCHISES, MODIFY_USER: user_id=<target user id>
    """
    if user is None:
        return False
    return _POLICIES[operation](user, **ctx)


def authorize(user: Optional[User], operation: Operation, message: str = "unauthorized", **ctx) -> None:
    """Raise Forbidden(message) unless the policy allows the operation."""
    if not is_allowed(user, operation, **ctx):
        raise Forbidden(message)
