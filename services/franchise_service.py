"""
services/franchise_service.py -- Franchise and store management.

Store operations load the franchise first so the MANAGE_STORE policy can check
its admin list. An unknown franchise is reported as 403 with the operation's
message, the same as a franchise the caller does not administer.
"""

from __future__ import annotations

import logging
from typing import Optional

from auth.entitlements import Operation, authorize
from auth.models import User
from core.errors import Forbidden
from database.models import Franchise, Store
from database.store import PizzaStore

logger = logging.getLogger("pizza.franchise")


class FranchiseService:
    def __init__(self, store: PizzaStore) -> None:
        self.store = store

    def list(
        self,
        caller: Optional[User],
        page: int = 1,
        limit: int = 10,
        name_filter: str = "*",
    ) -> tuple[list[Franchise], bool]:
        return self.store.get_franchises(caller, page, limit, name_filter)

    def user_franchises(self, caller: User, user_id: int) -> list[Franchise]:
        authorize(caller, Operation.VIEW_USER_FRANCHISES, user_id=user_id)
        return self.store.get_user_franchises(user_id)

    def create(self, caller: User, franchise: Franchise) -> Franchise:
        authorize(caller, Operation.CREATE_FRANCHISE, "unable to create a franchise")
        created = self.store.create_franchise(franchise)
        logger.info("Franchise %s created by user id=%s", created.id, caller.id)
        return created

    def delete(self, caller: User, franchise_id: int) -> None:
        authorize(caller, Operation.DELETE_FRANCHISE, "unable to delete a franchise")
        self.store.delete_franchise(franchise_id)
        logger.info("Franchise %s deleted by user id=%s", franchise_id, caller.id)

    def create_store(self, caller: User, franchise_id: int, store: Store) -> Store:
        self._authorize_store(caller, franchise_id, "unable to create a store")
        return self.store.create_store(franchise_id, store)

    def delete_store(self, caller: User, franchise_id: int, store_id: int) -> None:
        self._authorize_store(caller, franchise_id, "unable to delete a store")
        self.store.delete_store(franchise_id, store_id)

    def _authorize_store(self, caller: User, franchise_id: int, message: str) -> None:
        franchise = self.store.get_franchise_by_id(franchise_id)
        if franchise is None:
            raise Forbidden(message)
        authorize(caller, Operation.MANAGE_STORE, message, franchise=franchise)
