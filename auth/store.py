"""
auth/store.py -- SQLAlchemy Core persistence for users, role grants and sessions.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user is
the mapper. Services and route code never touch SQL directly.

Password hashes are read only inside this module (for verification) and are
never mapped onto the User dataclass.

Multi-statement writes (user + grants, role diffs, user deletion) each run in
one transaction via database.schema.transaction(): either every statement
commits or none does.

The auth_tokens table is the server-side revocation set: a row exists for each
issued-and-not-yet-revoked token signature. Only the signature segment is
stored.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.models import (
    Franchisee,
    NamedFranchisee,
    RoleGrant,
    RoleRequest,
    User,
    UserCandidate,
    grant_from_row,
    unique_grants,
)
from auth.tokens import burn_password_check, hash_password, token_signature, verify_password
from core.errors import Conflict, InvalidCredentials, NotFound
from database.schema import (
    auth_tokens,
    get_offset,
    read_connection,
    resolve_id,
    transaction,
    translate_name_filter,
    user_roles,
    users,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_roles(conn: Connection, user_id: int) -> list[RoleGrant]:
    rows = conn.execute(
        select(user_roles.c.role, user_roles.c.object_id)
        .where(user_roles.c.user_id == user_id)
        .order_by(user_roles.c.id)
    ).fetchall()
    return unique_grants(grant_from_row(r.role, r.object_id) for r in rows)


def _resolve_grants(conn: Connection, requested: list[RoleRequest]) -> list[RoleGrant]:
    """Resolve NamedFranchisee requests to Franchisee(object_id).

    Raises NotFound("No ID found") when a named franchise does not exist.
    """
    resolved: list[RoleGrant] = []
    for grant in requested:
        if isinstance(grant, NamedFranchisee):
            grant = Franchisee(object_id=resolve_id(conn, "name", grant.franchise, "franchises"))
        resolved.append(grant)
    return unique_grants(resolved)


def _insert_grants(conn: Connection, user_id: int, grants: list[RoleGrant]) -> None:
    for grant in grants:
        conn.execute(insert(user_roles).values(user_id=user_id, role=grant.role.value, object_id=grant.object_id))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, role grant and session-token rows.

    Usage:
        engine = open_engine("sqlite:///pizza.db")
        store = UserStore(engine)
        user = store.add_user(UserCandidate(name="Alice", email="a@test.com", password="pw"))
        user = store.get_user("a@test.com", "pw")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with read_connection(self.engine) as conn:
            count = conn.execute(select(func.count()).select_from(users)).scalar()
        return (count or 0) > 0

    def get_user(self, email: str, password: Optional[str] = None) -> User:
        """Look up a user by email, optionally verifying a password.

        Unknown email and wrong password both raise InvalidCredentials("unknown
        user"), so the two cases are indistinguishable to the caller. When the
        email is unknown but a password was supplied, bcrypt still runs against
        a dummy hash to keep response timing equal.

        Returns the user with its role grants loaded and no password.
        """
        with read_connection(self.engine) as conn:
            row = conn.execute(select(users).where(users.c.email == email)).first()
            if row is None:
                if password is not None:
                    burn_password_check(password)
                raise InvalidCredentials()
            if password is not None and not verify_password(password, row.password):
                raise InvalidCredentials()
            return _row_to_user(row, _load_roles(conn, row.id))

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        """Look up a user by primary key. Returns None if not found."""
        with read_connection(self.engine) as conn:
            row = conn.execute(select(users).where(users.c.id == user_id)).first()
            if row is None:
                return None
            return _row_to_user(row, _load_roles(conn, row.id))

    def add_user(self, candidate: UserCandidate) -> User:
        """Insert a user and its role grants in one transaction.

        NamedFranchisee grants are resolved to franchise ids first; an unknown
        franchise name raises NotFound and nothing is written. A duplicate
        email raises Conflict.
        """
        hashed = hash_password(candidate.password)
        try:
            with transaction(self.engine) as conn:
                grants = _resolve_grants(conn, candidate.roles)
                result = conn.execute(
                    insert(users).values(name=candidate.name, email=candidate.email, password=hashed)
                )
                user_id = result.inserted_primary_key[0]
                _insert_grants(conn, user_id, grants)
        except IntegrityError as exc:
            raise Conflict("a user with that email already exists") from exc
        return User(id=user_id, name=candidate.name, email=candidate.email, roles=grants)

    def update_user(
        self,
        user_id: int,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        roles: Optional[list[RoleRequest]] = None,
    ) -> User:
        """Partially update a user; only supplied fields are written.

        roles, when given, is the complete new grant list. It is applied as a
        diff: grants that are no longer wanted are deleted, new ones inserted,
        unchanged grants keep their rows (and so their order).

        Always re-reads the record after commit. Raises NotFound("User not
        found") for an unknown id and Conflict for a duplicate email.
        """
        fields: dict = {}
        if name is not None:
            fields["name"] = name
        if email is not None:
            fields["email"] = email
        if password is not None:
            fields["password"] = hash_password(password)

        try:
            with transaction(self.engine) as conn:
                exists = conn.execute(select(users.c.id).where(users.c.id == user_id)).first()
                if exists is None:
                    raise NotFound("User not found")
                if fields:
                    conn.execute(update(users).where(users.c.id == user_id).values(**fields))
                if roles is not None:
                    self._apply_role_diff(conn, user_id, _resolve_grants(conn, roles))
        except IntegrityError as exc:
            raise Conflict("a user with that email already exists") from exc

        updated = self.get_user_by_id(user_id)
        if updated is None:
            raise NotFound("User not found")
        return updated

    @staticmethod
    def _apply_role_diff(conn: Connection, user_id: int, wanted: list[RoleGrant]) -> None:
        rows = conn.execute(
            select(user_roles.c.id, user_roles.c.role, user_roles.c.object_id)
            .where(user_roles.c.user_id == user_id)
            .order_by(user_roles.c.id)
        ).fetchall()
        kept: set = set()
        stale_ids: list[int] = []
        for r in rows:
            grant = grant_from_row(r.role, r.object_id)
            if grant in wanted and grant not in kept:
                kept.add(grant)
            else:
                stale_ids.append(r.id)
        if stale_ids:
            conn.execute(delete(user_roles).where(user_roles.c.id.in_(stale_ids)))
        _insert_grants(conn, user_id, [g for g in wanted if g not in kept])

    def delete_user(self, user_id: int) -> None:
        """Delete a user, its role grants and its sessions in one transaction.

        Raises NotFound("User not found") if no user row was deleted; the
        transaction is rolled back in that case so nothing else is touched.
        """
        with transaction(self.engine) as conn:
            conn.execute(delete(user_roles).where(user_roles.c.user_id == user_id))
            conn.execute(delete(auth_tokens).where(auth_tokens.c.user_id == user_id))
            result = conn.execute(delete(users).where(users.c.id == user_id))
            if result.rowcount == 0:
                raise NotFound("User not found")

    def list_users(self, page: int = 1, limit: int = 10, name_filter: str = "*") -> tuple[list[User], bool]:
        """Return one page of users ordered by id, and whether more exist.

        name_filter uses "*" as wildcard ("*" alone means unfiltered). One
        extra row is fetched as lookahead: more is True iff it came back.
        Roles are loaded per returned user, in grant order.
        """
        pattern = translate_name_filter(name_filter or "*")
        with read_connection(self.engine) as conn:
            rows = conn.execute(
                select(users)
                .where(users.c.name.like(pattern, escape="\\"))
                .order_by(users.c.id)
                .limit(limit + 1)
                .offset(get_offset(page, limit))
            ).fetchall()
            more = len(rows) > limit
            rows = rows[:limit]
            return [_row_to_user(r, _load_roles(conn, r.id)) for r in rows], more

    # ------------------------------------------------------------------
    # Session tokens (revocation table)
    # ------------------------------------------------------------------

    def store_token(self, user_id: int, token: str) -> None:
        """Record a freshly issued token's signature. Raises on write failure."""
        signature = token_signature(token)
        if not signature:
            raise ValueError("token has no signature segment")
        with transaction(self.engine) as conn:
            conn.execute(insert(auth_tokens).values(token=signature, user_id=user_id, created_at=_now_iso()))

    def is_logged_in(self, token: str) -> bool:
        """True iff the token's signature is present in the revocation table."""
        signature = token_signature(token)
        if not signature:
            return False
        with read_connection(self.engine) as conn:
            row = conn.execute(select(auth_tokens.c.user_id).where(auth_tokens.c.token == signature)).first()
        return row is not None

    def delete_token(self, token: str) -> None:
        """Remove the token's signature row. Idempotent."""
        signature = token_signature(token)
        if not signature:
            return
        with transaction(self.engine) as conn:
            conn.execute(delete(auth_tokens).where(auth_tokens.c.token == signature))

    def purge_tokens(self, issued_before: str) -> int:
        """Delete token rows created before the given ISO 8601 timestamp."""
        with transaction(self.engine) as conn:
            result = conn.execute(delete(auth_tokens).where(auth_tokens.c.created_at < issued_before))
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, roles: list[RoleGrant]) -> User:
    return User(id=row.id, name=row.name, email=row.email, roles=roles)
