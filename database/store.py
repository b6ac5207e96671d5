"""
database/store.py -- SQLAlchemy-backed persistence for menu, franchises, stores and orders.

Pattern: Repository + Data Mapper. PizzaStore is the repository; the _row_to_*
functions map rows to the dataclasses in database/models.py. Users and their
role grants live in auth/store.py; both repositories share one Engine and one
schema (database/schema.py).

Transactions: order + items, franchise + franchisee grants, franchise deletion
and store deletion each run inside one transaction(). delete_franchise() is the
widest one: order items -> orders -> stores -> franchisee grants -> franchise,
all or nothing.

Pagination is lookahead-by-one: limit + 1 rows are fetched and the extra row
only answers "is there more?". No COUNT query is issued.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = PizzaStore(open_engine("sqlite:///pizza.db"))
    item = store.add_menu_item(MenuItem(title="Veggie", price=0.0038))
    franchise = store.create_franchise(Franchise(name="pizzaPocket", admins=[FranchiseAdmin(email="f@jwt.com")]))
    store.create_store(franchise.id, Store(name="SLC"))
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, insert, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.entitlements import Operation, is_allowed
from auth.models import Role, User
from core.errors import Conflict, NotFound, OperationFailed
from database.models import DinerOrders, Franchise, FranchiseAdmin, MenuItem, Order, OrderItem, Store
from database.schema import (
    diner_orders,
    franchises,
    get_offset,
    menu_items,
    order_items,
    read_connection,
    resolve_id,
    stores,
    transaction,
    translate_name_filter,
    user_roles,
    users,
)

logger = logging.getLogger("pizza.db")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PizzaStore:
    def __init__(self, engine: Engine, list_per_page: int = 10) -> None:
        self.engine = engine
        self.list_per_page = list_per_page

    # ------------------------------------------------------------------
    # Menu
    # ------------------------------------------------------------------

    def get_menu(self) -> list[MenuItem]:
        with read_connection(self.engine) as conn:
            rows = conn.execute(select(menu_items).order_by(menu_items.c.id)).fetchall()
        return [_row_to_menu_item(r) for r in rows]

    def add_menu_item(self, item: MenuItem) -> MenuItem:
        """Insert a menu item and return it with its assigned id."""
        with transaction(self.engine) as conn:
            result = conn.execute(
                insert(menu_items).values(
                    title=item.title,
                    description=item.description,
                    image=item.image,
                    price=item.price,
                )
            )
            item_id = result.inserted_primary_key[0]
        return MenuItem(id=item_id, title=item.title, description=item.description, image=item.image, price=item.price)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def get_orders(self, user: User, page: int = 1) -> DinerOrders:
        """Return one page of the user's orders, each with its items attached."""
        limit = self.list_per_page
        with read_connection(self.engine) as conn:
            rows = conn.execute(
                select(diner_orders)
                .where(diner_orders.c.diner_id == user.id)
                .order_by(diner_orders.c.id)
                .limit(limit)
                .offset(get_offset(page, limit))
            ).fetchall()
            orders = [_row_to_order(r, self._load_order_items(conn, r.id)) for r in rows]
        return DinerOrders(diner_id=user.id, page=page, orders=orders)

    @staticmethod
    def _load_order_items(conn: Connection, order_id: int) -> list[OrderItem]:
        rows = conn.execute(
            select(order_items).where(order_items.c.order_id == order_id).order_by(order_items.c.id)
        ).fetchall()
        return [_row_to_order_item(r) for r in rows]

    def add_diner_order(self, user: User, order: Order) -> Order:
        """Insert an order and all its items in one transaction.

        Every item's menu_id must name an existing menu item (NotFound
        otherwise). The store must belong to the order's franchise; an unknown
        franchise or store, or a store of another franchise, raises NotFound.
        Nothing is written unless every insert succeeds.
        """
        date = _now_iso()
        try:
            with transaction(self.engine) as conn:
                owned = conn.execute(
                    select(stores.c.id).where(
                        (stores.c.id == order.store_id) & (stores.c.franchise_id == order.franchise_id)
                    )
                ).first()
                if owned is None:
                    raise NotFound("unknown franchise or store")
                result = conn.execute(
                    insert(diner_orders).values(
                        diner_id=user.id,
                        franchise_id=order.franchise_id,
                        store_id=order.store_id,
                        date=date,
                    )
                )
                order_id = result.inserted_primary_key[0]
                placed: list[OrderItem] = []
                for item in order.items:
                    menu_id = resolve_id(conn, "id", item.menu_id, "menu_items")
                    item_result = conn.execute(
                        insert(order_items).values(
                            order_id=order_id,
                            menu_id=menu_id,
                            description=item.description,
                            price=item.price,
                        )
                    )
                    placed.append(
                        OrderItem(
                            id=item_result.inserted_primary_key[0],
                            menu_id=menu_id,
                            description=item.description,
                            price=item.price,
                        )
                    )
        except IntegrityError as exc:
            raise NotFound("unknown franchise or store") from exc
        return Order(
            id=order_id,
            diner_id=user.id,
            franchise_id=order.franchise_id,
            store_id=order.store_id,
            date=date,
            items=placed,
        )

    # ------------------------------------------------------------------
    # Franchises
    # ------------------------------------------------------------------

    def create_franchise(self, franchise: Franchise) -> Franchise:
        """Create a franchise and grant Franchisee on it to every listed admin.

        Admins are given by email. An unknown email raises NotFound and nothing
        is written; a duplicate franchise name raises Conflict.
        """
        admins: list[FranchiseAdmin] = []
        try:
            with transaction(self.engine) as conn:
                for admin in franchise.admins:
                    row = conn.execute(select(users.c.id, users.c.name).where(users.c.email == admin.email)).first()
                    if row is None:
                        raise NotFound(f"unknown user for franchise admin {admin.email} provided")
                    admins.append(FranchiseAdmin(id=row.id, name=row.name, email=admin.email))
                result = conn.execute(insert(franchises).values(name=franchise.name))
                franchise_id = result.inserted_primary_key[0]
                for admin in admins:
                    conn.execute(
                        insert(user_roles).values(user_id=admin.id, role=Role.Franchisee.value, object_id=franchise_id)
                    )
        except IntegrityError as exc:
            raise Conflict("a franchise with that name already exists") from exc
        return Franchise(id=franchise_id, name=franchise.name, admins=admins, stores=[])

    def get_franchises(
        self,
        caller: Optional[User],
        page: int = 1,
        limit: int = 10,
        name_filter: str = "*",
    ) -> tuple[list[Franchise], bool]:
        """Return one page of franchises and whether more exist.

        Callers entitled to franchise detail (admins) get admins and per-store
        revenue; everyone else gets stores as bare {id, name}.
        """
        detailed = is_allowed(caller, Operation.VIEW_FRANCHISE_DETAIL)
        pattern = translate_name_filter(name_filter or "*")
        with read_connection(self.engine) as conn:
            rows = conn.execute(
                select(franchises)
                .where(franchises.c.name.like(pattern, escape="\\"))
                .order_by(franchises.c.id)
                .limit(limit + 1)
                .offset(get_offset(page, limit))
            ).fetchall()
            more = len(rows) > limit
            result: list[Franchise] = []
            for row in rows[:limit]:
                franchise = Franchise(id=row.id, name=row.name)
                if detailed:
                    self._attach_detail(conn, franchise)
                else:
                    franchise.stores = self._load_store_names(conn, row.id)
                result.append(franchise)
        return result, more

    def get_franchise(self, franchise: Franchise) -> Franchise:
        """Attach admins and stores (with total revenue) to franchise and return it."""
        with read_connection(self.engine) as conn:
            return self._attach_detail(conn, franchise)

    def get_franchise_by_id(self, franchise_id: int) -> Optional[Franchise]:
        """Load one franchise with full detail. Returns None if not found."""
        with read_connection(self.engine) as conn:
            row = conn.execute(select(franchises).where(franchises.c.id == franchise_id)).first()
            if row is None:
                return None
            return self._attach_detail(conn, Franchise(id=row.id, name=row.name))

    def get_user_franchises(self, user_id: int) -> list[Franchise]:
        """Return every franchise the user is a franchisee of, with detail. [] when none."""
        with read_connection(self.engine) as conn:
            ids = [
                r.object_id
                for r in conn.execute(
                    select(user_roles.c.object_id)
                    .where((user_roles.c.user_id == user_id) & (user_roles.c.role == Role.Franchisee.value))
                    .distinct()
                ).fetchall()
            ]
            if not ids:
                return []
            rows = conn.execute(
                select(franchises).where(franchises.c.id.in_(ids)).order_by(franchises.c.id)
            ).fetchall()
            return [self._attach_detail(conn, Franchise(id=r.id, name=r.name)) for r in rows]

    def _attach_detail(self, conn: Connection, franchise: Franchise) -> Franchise:
        admin_rows = conn.execute(
            select(users.c.id, users.c.name, users.c.email)
            .select_from(user_roles.join(users, users.c.id == user_roles.c.user_id))
            .where((user_roles.c.object_id == franchise.id) & (user_roles.c.role == Role.Franchisee.value))
            .order_by(user_roles.c.id)
        ).fetchall()
        franchise.admins = [FranchiseAdmin(id=r.id, name=r.name, email=r.email) for r in admin_rows]

        # LEFT JOINs keep stores without orders; COALESCE turns their NULL sum into 0.
        revenue = func.coalesce(func.sum(order_items.c.price), 0).label("total_revenue")
        store_rows = conn.execute(
            select(stores.c.id, stores.c.name, revenue)
            .select_from(
                stores.outerjoin(diner_orders, diner_orders.c.store_id == stores.c.id).outerjoin(
                    order_items, order_items.c.order_id == diner_orders.c.id
                )
            )
            .where(stores.c.franchise_id == franchise.id)
            .group_by(stores.c.id, stores.c.name)
            .order_by(stores.c.id)
        ).fetchall()
        franchise.stores = [
            Store(id=r.id, name=r.name, franchise_id=franchise.id, total_revenue=float(r.total_revenue))
            for r in store_rows
        ]
        return franchise

    @staticmethod
    def _load_store_names(conn: Connection, franchise_id: int) -> list[Store]:
        rows = conn.execute(
            select(stores.c.id, stores.c.name).where(stores.c.franchise_id == franchise_id).order_by(stores.c.id)
        ).fetchall()
        return [Store(id=r.id, name=r.name, franchise_id=franchise_id) for r in rows]

    def delete_franchise(self, franchise_id: int) -> None:
        """Delete a franchise and everything that depends on it, atomically.

        Order: order items -> orders -> stores -> franchisee grants -> franchise.
        Any failure rolls the whole transaction back and raises
        OperationFailed("unable to delete franchise").
        """
        order_ids = select(diner_orders.c.id).where(diner_orders.c.franchise_id == franchise_id)
        try:
            with transaction(self.engine) as conn:
                conn.execute(delete(order_items).where(order_items.c.order_id.in_(order_ids)))
                conn.execute(delete(diner_orders).where(diner_orders.c.franchise_id == franchise_id))
                conn.execute(delete(stores).where(stores.c.franchise_id == franchise_id))
                conn.execute(
                    delete(user_roles).where(
                        (user_roles.c.object_id == franchise_id) & (user_roles.c.role == Role.Franchisee.value)
                    )
                )
                conn.execute(delete(franchises).where(franchises.c.id == franchise_id))
        except Exception as exc:
            logger.error("delete_franchise(%s) rolled back: %s", franchise_id, exc)
            raise OperationFailed("unable to delete franchise") from exc

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    def create_store(self, franchise_id: int, store: Store) -> Store:
        """Insert a store under a franchise. Unknown franchise raises NotFound."""
        try:
            with transaction(self.engine) as conn:
                result = conn.execute(insert(stores).values(franchise_id=franchise_id, name=store.name))
                store_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise NotFound("unknown franchise") from exc
        return Store(id=store_id, franchise_id=franchise_id, name=store.name)

    def delete_store(self, franchise_id: int, store_id: int) -> None:
        """Delete a store of a franchise together with its orders, in one transaction.

        A store_id that does not belong to franchise_id is left untouched.
        """
        scoped = (diner_orders.c.store_id == store_id) & (diner_orders.c.franchise_id == franchise_id)
        with transaction(self.engine) as conn:
            conn.execute(delete(order_items).where(order_items.c.order_id.in_(select(diner_orders.c.id).where(scoped))))
            conn.execute(delete(diner_orders).where(scoped))
            conn.execute(delete(stores).where((stores.c.franchise_id == franchise_id) & (stores.c.id == store_id)))


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_menu_item(row) -> MenuItem:
    return MenuItem(id=row.id, title=row.title, description=row.description, image=row.image, price=row.price)


def _row_to_order_item(row) -> OrderItem:
    return OrderItem(id=row.id, menu_id=row.menu_id, description=row.description, price=row.price)


def _row_to_order(row, items: list[OrderItem]) -> Order:
    return Order(
        id=row.id,
        diner_id=row.diner_id,
        franchise_id=row.franchise_id,
        store_id=row.store_id,
        date=row.date,
        items=items,
    )
