"""
api/routes/v1/user.py -- User profile and administration endpoints.

Routes:
  GET    /api/user/me                      -- the authenticated user
  PUT    /api/user/{userId}                -- update self (or anyone, as admin); returns {user, token}
  GET    /api/user?page=1&limit=10&name=*  -- paginated user list (admin)
  DELETE /api/user/{userId}                -- delete self (or anyone, as admin)

Every route requires auth. Ownership and admin checks happen in UserService
through the policy table; a denial is a 403 "unauthorized".
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from api.dependencies import get_current_user
from api.models import AuthResponse, MessageResponse, UserListResponse, UserOut, UserUpdateRequest
from auth.models import User
from services.user_service import UserService

router = APIRouter()


@router.get("/user/me", response_model=UserOut, response_model_exclude_none=True)
def me(current_user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.from_domain(current_user)


@router.put("/user/{user_id}", response_model=AuthResponse, response_model_exclude_none=True)
def update_user(
    request: Request,
    response: Response,
    user_id: int,
    body: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
) -> AuthResponse:
    """Update name, email, password and (admins only) roles.

    A new token for the updated user is returned; the caller's current token
    stays valid.
    """
    service: UserService = request.app.state.user_service
    roles = [r.to_domain() for r in body.roles] if body.roles is not None else None
    user, token = service.update(
        current_user,
        user_id,
        name=body.name,
        email=body.email,
        password=body.password,
        roles=roles,
    )
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(user=UserOut.from_domain(user), token=token)


@router.get("/user", response_model=UserListResponse, response_model_exclude_none=True)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    name: str = Query(default="*", max_length=255),
    current_user: User = Depends(get_current_user),
) -> UserListResponse:
    service: UserService = request.app.state.user_service
    users, more = service.list(current_user, page, limit, name)
    return UserListResponse(users=[UserOut.from_domain(u) for u in users], more=more)


@router.delete("/user/{user_id}", response_model=MessageResponse)
def delete_user(request: Request, user_id: int, current_user: User = Depends(get_current_user)) -> MessageResponse:
    service: UserService = request.app.state.user_service
    service.delete(current_user, user_id)
    return MessageResponse(message="User deleted successfully")
