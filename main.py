#!/usr/bin/env python3
"""
JWT Pizza -- operator command line.

Works directly against the configured database (DATABASE_URL), without going
through the HTTP API. Meant for bootstrapping and maintenance.

Usage:
  python main.py create-admin --name "Pizza Boss" --email boss@jwt.com
  python main.py add-menu-item --title Veggie --price 0.0038 --description "A garden of delight"
  python main.py menu
  python main.py users --name "Kai*"
  python main.py purge-tokens
"""

import argparse
import getpass
import sys

from auth.models import Admin, UserCandidate
from auth.sessions import TokenService
from auth.store import UserStore
from core.config import get_settings
from core.errors import PizzaError
from database.models import MenuItem
from database.schema import open_engine
from database.store import PizzaStore


def _create_admin(args, user_store: UserStore, pizza_store: PizzaStore) -> int:
    password = args.password or getpass.getpass("  Password: ")
    if not password:
        print("  [!] A password is required.")
        return 1
    user = user_store.add_user(UserCandidate(name=args.name, email=args.email, password=password, roles=[Admin()]))
    print(f"  Created admin {user.email} (id {user.id}).")
    return 0


def _add_menu_item(args, user_store: UserStore, pizza_store: PizzaStore) -> int:
    item = pizza_store.add_menu_item(
        MenuItem(title=args.title, price=args.price, description=args.description, image=args.image)
    )
    print(f"  Added menu item {item.id}: {item.title} ({item.price})")
    return 0


def _menu(args, user_store: UserStore, pizza_store: PizzaStore) -> int:
    items = pizza_store.get_menu()
    if not items:
        print("  The menu is empty.")
        return 0
    for item in items:
        print(f"  {item.id:>4}  {item.title:<24} {item.price:>10}  {item.description}")
    return 0


def _users(args, user_store: UserStore, pizza_store: PizzaStore) -> int:
    users, more = user_store.list_users(args.page, args.limit, args.name)
    for user in users:
        roles = ", ".join(
            g.role.value if g.object_id is None else f"{g.role.value}:{g.object_id}" for g in user.roles
        )
        print(f"  {user.id:>4}  {user.name:<24} {user.email:<32} {roles}")
    if more:
        print(f"\n  More users on page {args.page + 1}.")
    return 0


def _purge_tokens(args, user_store: UserStore, pizza_store: PizzaStore) -> int:
    settings = get_settings()
    removed = TokenService(user_store).purge_expired_tokens(settings.token_expire_seconds)
    print(f"  Removed {removed} expired session token(s).")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="jwt-pizza",
        description="Maintenance commands for the JWT Pizza service database.",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("create-admin", help="Create a user with the admin role")
    p.add_argument("--name", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--password", help="Prompted for when omitted")
    p.set_defaults(handler=_create_admin)

    p = sub.add_parser("add-menu-item", help="Add an item to the menu")
    p.add_argument("--title", required=True)
    p.add_argument("--price", type=float, required=True)
    p.add_argument("--description", default="")
    p.add_argument("--image", default="")
    p.set_defaults(handler=_add_menu_item)

    p = sub.add_parser("menu", help="Print the menu")
    p.set_defaults(handler=_menu)

    p = sub.add_parser("users", help="List users, optionally filtered by name (* wildcard)")
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--name", default="*")
    p.set_defaults(handler=_users)

    p = sub.add_parser("purge-tokens", help="Delete session rows for tokens past their lifetime")
    p.set_defaults(handler=_purge_tokens)

    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 1

    settings = get_settings()
    engine = open_engine(settings.database_url, settings.db_timeout_seconds)
    try:
        return args.handler(args, UserStore(engine), PizzaStore(engine, settings.list_per_page))
    except PizzaError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
