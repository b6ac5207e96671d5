"""
database/models.py -- Domain dataclasses for the menu, franchises and orders.

Pure data containers. All persistence lives in database/store.py; the HTTP
shapes live in api/models.py. id is None before a record is written.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class MenuItem:
    title: str
    price: float
    description: str = ""
    image: str = ""
    id: Optional[int] = None


@dataclass
class Store:
    """A store of one franchise.

    total_revenue is derived (sum of the prices of every item ordered at this
    store). It is None when the store was loaded without revenue detail.
    """

    name: str
    franchise_id: Optional[int] = None
    id: Optional[int] = None
    total_revenue: Optional[float] = None


@dataclass
class FranchiseAdmin:
    """A user holding a franchisee grant for a franchise.

    On create only email is supplied; the store fills in id and name.
    """

    email: str
    id: Optional[int] = None
    name: Optional[str] = None


@dataclass
class Franchise:
    name: str
    id: Optional[int] = None
    admins: list[FranchiseAdmin] = field(default_factory=list)
    stores: list[Store] = field(default_factory=list)


@dataclass
class OrderItem:
    menu_id: int
    description: str
    price: float
    id: Optional[int] = None


@dataclass
class Order:
    """A diner's order. Immutable once placed: there is no update path."""

    franchise_id: int
    store_id: int
    items: list[OrderItem] = field(default_factory=list)
    id: Optional[int] = None
    diner_id: Optional[int] = None
    date: Optional[str] = None  # ISO 8601, set by the store on insert


@dataclass
class DinerOrders:
    """One page of a diner's order history."""

    diner_id: int
    page: int
    orders: list[Order] = field(default_factory=list)
