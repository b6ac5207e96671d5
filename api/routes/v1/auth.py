"""
api/routes/v1/auth.py -- Registration, login and logout.

Routes:
  POST   /api/auth   -- register a new diner; returns {user, token}
  PUT    /api/auth   -- login with email + password; returns {user, token}
  DELETE /api/auth   -- logout; revokes the presented token

Security:
  PUT /api/auth is rate-limited per client IP (Settings.login_rate_limit).
  Unknown email and wrong password produce the same 404 "unknown user".
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.dependencies import get_current_user, read_token
from api.limiter import limiter
from api.models import AuthResponse, LoginRequest, MessageResponse, RegisterRequest, UserOut
from auth.models import User
from core.config import get_settings
from services.auth_service import AuthService

_settings = get_settings()

# Auth policy:
# - POST   /api/auth:  public
# - PUT    /api/auth:  public, rate limited
# - DELETE /api/auth:  requires auth (get_current_user)
router = APIRouter()


@router.post("/auth", response_model=AuthResponse, response_model_exclude_none=True)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create a diner account and return it with a session token."""
    service: AuthService = request.app.state.auth_service
    user, token = service.register(body.to_domain())
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(user=UserOut.from_domain(user), token=token)


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.put("/auth", response_model=AuthResponse, response_model_exclude_none=True)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    service: AuthService = request.app.state.auth_service
    user, token = service.login(body.email, body.password)
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(user=UserOut.from_domain(user), token=token)


@router.delete("/auth", response_model=MessageResponse)
def logout(request: Request, current_user: User = Depends(get_current_user)) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    service.logout(read_token(request))
    return MessageResponse(message="logout successful")
