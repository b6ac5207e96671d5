"""
api/routes/v1/franchise.py -- Franchise and store endpoints.

Routes:
  GET    /api/franchise?page=1&limit=10&name=*            -- list franchises (public)
  GET    /api/franchise/{userId}                          -- a user's franchises
  POST   /api/franchise                                   -- create a franchise (admin)
  DELETE /api/franchise/{franchiseId}                     -- delete a franchise (admin)
  POST   /api/franchise/{franchiseId}/store               -- create a store (admin or franchisee)
  DELETE /api/franchise/{franchiseId}/store/{storeId}     -- delete a store (admin or franchisee)

The listing is public; an authenticated admin additionally sees each
franchise's admins and per-store revenue.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import get_current_user, try_get_current_user
from api.models import FranchiseListResponse, FranchiseOut, FranchiseRequest, MessageResponse, StoreOut, StoreRequest
from auth.entitlements import Operation, is_allowed
from auth.models import User
from database.models import Store
from services.franchise_service import FranchiseService

router = APIRouter()


@router.get("/franchise", response_model=FranchiseListResponse, response_model_exclude_none=True)
def list_franchises(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    name: str = Query(default="*", max_length=255),
    current_user: Optional[User] = Depends(try_get_current_user),
) -> FranchiseListResponse:
    service: FranchiseService = request.app.state.franchise_service
    franchises, more = service.list(current_user, page, limit, name)
    detailed = is_allowed(current_user, Operation.VIEW_FRANCHISE_DETAIL)
    return FranchiseListResponse(
        franchises=[FranchiseOut.from_domain(f, detailed) for f in franchises],
        more=more,
    )


@router.get("/franchise/{user_id}", response_model=list[FranchiseOut], response_model_exclude_none=True)
def user_franchises(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> list[FranchiseOut]:
    service: FranchiseService = request.app.state.franchise_service
    return [FranchiseOut.from_domain(f) for f in service.user_franchises(current_user, user_id)]


@router.post("/franchise", response_model=FranchiseOut, response_model_exclude_none=True)
def create_franchise(
    request: Request,
    body: FranchiseRequest,
    current_user: User = Depends(get_current_user),
) -> FranchiseOut:
    service: FranchiseService = request.app.state.franchise_service
    return FranchiseOut.from_domain(service.create(current_user, body.to_domain()))


@router.delete("/franchise/{franchise_id}", response_model=MessageResponse)
def delete_franchise(
    request: Request,
    franchise_id: int,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    service: FranchiseService = request.app.state.franchise_service
    service.delete(current_user, franchise_id)
    return MessageResponse(message="franchise deleted")


@router.post("/franchise/{franchise_id}/store", response_model=StoreOut, response_model_exclude_none=True)
def create_store(
    request: Request,
    franchise_id: int,
    body: StoreRequest,
    current_user: User = Depends(get_current_user),
) -> StoreOut:
    service: FranchiseService = request.app.state.franchise_service
    return StoreOut.from_domain(service.create_store(current_user, franchise_id, Store(name=body.name)))


@router.delete("/franchise/{franchise_id}/store/{store_id}", response_model=MessageResponse)
def delete_store(
    request: Request,
    franchise_id: int,
    store_id: int,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    service: FranchiseService = request.app.state.franchise_service
    service.delete_store(current_user, franchise_id, store_id)
    return MessageResponse(message="store deleted")
