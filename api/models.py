"""
API request and response models for the JWT Pizza REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
database/models.py, which own the internal domain representation. The
from_domain() / to_domain() helpers map between the two.

The wire format is camelCase (franchiseId, totalRevenue, followLinkToEndChaos);
fields are declared snake_case and aliased with to_camel. Request bodies accept
either spelling.
"""

from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.models import Admin, Diner, Franchisee, NamedFranchisee, Role, RoleRequest, User, UserCandidate
from auth.tokens import PASSWORD_MAX_BYTES
from database.models import DinerOrders, Franchise, FranchiseAdmin, MenuItem, Order, OrderItem, Store

# Passwords are taken verbatim; WireModel strips every other string.
Password = Annotated[str, StringConstraints(strip_whitespace=False, min_length=1)]


def _check_password_bytes(value: Optional[str]) -> Optional[str]:
    if value is not None and len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes")
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RoleIn(WireModel):
    """A role grant in a request body.

    Franchisee grants name their franchise either by objectId or by franchise
    name; other roles take neither.
    """

    role: Role
    object_id: Optional[int] = None
    franchise: Optional[str] = None

    @model_validator(mode="after")
    def check_scope(self) -> "RoleIn":
        if self.role is Role.Franchisee and self.object_id is None and not self.franchise:
            raise ValueError("franchisee role requires objectId or franchise")
        return self

    def to_domain(self) -> RoleRequest:
        if self.role is Role.Diner:
            return Diner()
        if self.role is Role.Admin:
            return Admin()
        if self.object_id is not None:
            return Franchisee(object_id=self.object_id)
        return NamedFranchisee(franchise=self.franchise)


class RegisterRequest(WireModel):
    """Request body for POST /api/auth. New users are always diners."""

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    password: Password

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_bytes(value)

    def to_domain(self) -> UserCandidate:
        return UserCandidate(name=self.name, email=self.email, password=self.password)


class LoginRequest(WireModel):
    email: str = Field(min_length=1, max_length=255)
    password: Password

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_bytes(value)


class UserUpdateRequest(WireModel):
    """Request body for PUT /api/user/{userId}. Omitted fields are left unchanged."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    password: Optional[Password] = None
    roles: Optional[list[RoleIn]] = None

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_bytes(value)


class MenuItemIn(WireModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=2000)
    image: str = Field(default="", max_length=1024)
    price: float = Field(ge=0)

    def to_domain(self) -> MenuItem:
        return MenuItem(title=self.title, description=self.description, image=self.image, price=self.price)


class OrderItemIn(WireModel):
    menu_id: int
    description: str = Field(min_length=1, max_length=255)
    price: float = Field(ge=0)


class OrderRequest(WireModel):
    """Request body for POST /api/order."""

    franchise_id: int
    store_id: int
    items: list[OrderItemIn] = Field(min_length=1, max_length=100)

    def to_domain(self) -> Order:
        return Order(
            franchise_id=self.franchise_id,
            store_id=self.store_id,
            items=[OrderItem(menu_id=i.menu_id, description=i.description, price=i.price) for i in self.items],
        )


class FranchiseAdminIn(WireModel):
    email: str = Field(min_length=3, max_length=255)


class FranchiseRequest(WireModel):
    name: str = Field(min_length=1, max_length=255)
    admins: list[FranchiseAdminIn] = Field(default_factory=list)

    def to_domain(self) -> Franchise:
        return Franchise(name=self.name, admins=[FranchiseAdmin(email=a.email) for a in self.admins])


class StoreRequest(WireModel):
    name: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RoleOut(WireModel):
    role: Role
    object_id: Optional[int] = None


class UserOut(WireModel):
    """A user as returned to clients. There is no password field."""

    id: int
    name: str
    email: str
    roles: list[RoleOut]

    @classmethod
    def from_domain(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            roles=[RoleOut(role=g.role, object_id=g.object_id) for g in user.roles],
        )


class AuthResponse(WireModel):
    user: UserOut
    token: str


class UserListResponse(WireModel):
    users: list[UserOut]
    more: bool


class MessageResponse(WireModel):
    message: str


class MenuItemOut(WireModel):
    id: int
    title: str
    description: str
    image: str
    price: float

    @classmethod
    def from_domain(cls, item: MenuItem) -> "MenuItemOut":
        return cls(id=item.id, title=item.title, description=item.description, image=item.image, price=item.price)


class OrderItemOut(WireModel):
    id: int
    menu_id: int
    description: str
    price: float


class OrderOut(WireModel):
    id: int
    diner_id: Optional[int] = None
    franchise_id: int
    store_id: int
    date: Optional[str] = None
    items: list[OrderItemOut]

    @classmethod
    def from_domain(cls, order: Order) -> "OrderOut":
        return cls(
            id=order.id,
            diner_id=order.diner_id,
            franchise_id=order.franchise_id,
            store_id=order.store_id,
            date=order.date,
            items=[OrderItemOut(id=i.id, menu_id=i.menu_id, description=i.description, price=i.price) for i in order.items],
        )


class DinerOrdersResponse(WireModel):
    diner_id: int
    page: int
    orders: list[OrderOut]

    @classmethod
    def from_domain(cls, page: DinerOrders) -> "DinerOrdersResponse":
        return cls(diner_id=page.diner_id, page=page.page, orders=[OrderOut.from_domain(o) for o in page.orders])


class OrderCreatedResponse(WireModel):
    order: OrderOut
    follow_link_to_end_chaos: Optional[str] = None
    jwt: str


class FranchiseAdminOut(WireModel):
    id: int
    name: str
    email: str


class StoreOut(WireModel):
    id: int
    name: str
    franchise_id: Optional[int] = None
    total_revenue: Optional[float] = None

    @classmethod
    def from_domain(cls, store: Store) -> "StoreOut":
        return cls(id=store.id, name=store.name, franchise_id=store.franchise_id, total_revenue=store.total_revenue)


class FranchiseOut(WireModel):
    """A franchise. admins and per-store totalRevenue are only filled in for
    callers entitled to franchise detail."""

    id: int
    name: str
    admins: Optional[list[FranchiseAdminOut]] = None
    stores: list[StoreOut] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, franchise: Franchise, detailed: bool = True) -> "FranchiseOut":
        admins = None
        if detailed:
            admins = [FranchiseAdminOut(id=a.id, name=a.name, email=a.email) for a in franchise.admins]
        return cls(
            id=franchise.id,
            name=franchise.name,
            admins=admins,
            stores=[StoreOut.from_domain(s) for s in franchise.stores],
        )


class FranchiseListResponse(WireModel):
    franchises: list[FranchiseOut]
    more: bool


class EndpointDoc(WireModel):
    method: str
    path: str
    requires_auth: bool
    description: str


class DocsResponse(WireModel):
    version: str
    endpoints: list[EndpointDoc]
    config: dict[str, str]


class HealthResponse(WireModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class ErrorResponse(WireModel):
    """Body of every error response."""

    message: str
    follow_link_to_end_chaos: Optional[str] = None
