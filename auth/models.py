"""
auth/models.py -- Domain dataclasses for identities and role grants.

Pattern: Data class (pure data containers). Stores and services do the work;
these types only own domain shape.

Role grants are tagged variants rather than a free-form {role, objectId} bag:

    RoleGrant = Diner | Admin | Franchisee(object_id)

so a franchisee grant without a franchise, or an admin grant scoped to a
franchise, cannot be constructed. NamedFranchisee is the request-side form of a
franchisee grant that names its franchise; the user store resolves the name to
an id before anything is written.

Layer rule: no imports from api/, database/, or services/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Role(str, Enum):
    Diner = "diner"
    Franchisee = "franchisee"
    Admin = "admin"


@dataclass(frozen=True)
class Diner:
    role = Role.Diner
    object_id = None


@dataclass(frozen=True)
class Admin:
    role = Role.Admin
    object_id = None


@dataclass(frozen=True)
class Franchisee:
    """Franchisee of exactly one franchise."""

    object_id: int
    role = Role.Franchisee


@dataclass(frozen=True)
class NamedFranchisee:
    """Franchisee grant that names its franchise instead of carrying its id."""

    franchise: str
    role = Role.Franchisee


RoleGrant = Union[Diner, Admin, Franchisee]
RoleRequest = Union[Diner, Admin, Franchisee, NamedFranchisee]


def grant_from_row(role: str, object_id: Optional[int]) -> RoleGrant:
    """Map a persisted (role, object_id) pair back to its variant.

    Raises ValueError for an unknown role string or a franchisee row without
    an object id -- both mean the user_roles table was written by something
    other than this code.
    """
    parsed = Role(role)
    if parsed is Role.Diner:
        return Diner()
    if parsed is Role.Admin:
        return Admin()
    if object_id is None:
        raise ValueError("franchisee role row without object_id")
    return Franchisee(object_id=object_id)


def unique_grants(grants) -> list:
    """Drop repeated grants, keeping the first occurrence (ordered-set semantics)."""
    seen: set = set()
    result: list = []
    for g in grants:
        if g not in seen:
            seen.add(g)
            result.append(g)
    return result


@dataclass
class User:
    """An authenticated identity.

    There is deliberately no password field: the hash stays inside the user
    store and never reaches a caller.
    """

    name: str
    email: str
    id: Optional[int] = None
    roles: list[RoleGrant] = field(default_factory=list)

    def is_role(self, role: Role, object_id: Optional[int] = None) -> bool:
        """True if any grant matches role (and object_id, when given)."""
        for grant in self.roles:
            if grant.role != role:
                continue
            if object_id is None or grant.object_id == object_id:
                return True
        return False


@dataclass
class UserCandidate:
    """Registration input. password is plaintext and is hashed by the store."""

    name: str
    email: str
    password: str
    roles: list[RoleRequest] = field(default_factory=lambda: [Diner()])
