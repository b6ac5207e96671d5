"""
api/main.py -- FastAPI application entry point for the JWT Pizza service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for browser clients
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. log_requests          -- request log line plus http-req telemetry

Lifespan handles startup (engine, stores, services, seed admin, background
loops) and shutdown (cancel loops, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import DocsResponse, EndpointDoc, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.franchise import router as franchise_router
from api.routes.v1.order import router as order_router
from api.routes.v1.user import router as user_router
from auth.models import Admin, UserCandidate
from auth.sessions import TokenService
from auth.store import UserStore
from core.config import get_settings
from core.errors import FactoryError, InfrastructureError, PizzaError
from core.factory import FactoryClient
from core.telemetry import Telemetry
from database.schema import open_engine
from database.store import PizzaStore
from services.auth_service import AuthService
from services.franchise_service import FranchiseService
from services.order_service import OrderService
from services.user_service import UserService

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("pizza.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# State wiring
# ---------------------------------------------------------------------------


def init_state(app: FastAPI, engine: Engine, telemetry: Telemetry, factory: FactoryClient) -> None:
    """Build stores and services on top of engine and attach them to app.state.

    The lifespan calls this with the configured engine; tests call it with an
    in-memory engine and a mocked factory.
    """
    user_store = UserStore(engine)
    pizza_store = PizzaStore(engine, list_per_page=_settings.list_per_page)
    tokens = TokenService(user_store, _settings.token_expire_seconds)

    app.state.engine = engine
    app.state.telemetry = telemetry
    app.state.user_store = user_store
    app.state.pizza_store = pizza_store
    app.state.tokens = tokens
    app.state.auth_service = AuthService(user_store, tokens, telemetry)
    app.state.user_service = UserService(user_store, tokens)
    app.state.franchise_service = FranchiseService(pizza_store)
    app.state.order_service = OrderService(pizza_store, factory, telemetry)


def seed_admin(user_store: UserStore) -> None:
    """Create the default admin on an empty database when a password is configured."""
    if not _settings.default_admin_password:
        return
    if user_store.has_users():
        return
    admin = user_store.add_user(
        UserCandidate(
            name=_settings.default_admin_name,
            email=_settings.default_admin_email,
            password=_settings.default_admin_password,
            roles=[Admin()],
        )
    )
    logger.info("Seeded default admin %s (id=%s)", admin.email, admin.id)


# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop revocation rows for tokens that have expired, once an hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(60 * 60)
        await asyncio.to_thread(app.state.tokens.purge_expired_tokens, _settings.token_expire_seconds)


async def _system_metrics_loop(app: FastAPI) -> None:
    while True:
        await asyncio.sleep(_settings.system_metrics_interval_seconds)
        await asyncio.to_thread(app.state.telemetry.system_metrics)


async def _active_users_loop(app: FastAPI) -> None:
    while True:
        await asyncio.sleep(_settings.active_users_interval_seconds)
        await asyncio.to_thread(app.state.telemetry.flush_active_users)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Engine first -- creates the schema; every store depends on it.
      2. Stores and services second.
      3. Seed admin third -- needs the user store.
      4. Background loops last -- they reference app.state.
    """
    logger.info("JWT Pizza service starting up (version %s)", _settings.version)
    engine = open_engine(_settings.database_url, _settings.db_timeout_seconds)
    telemetry = Telemetry.from_settings(_settings)
    factory = FactoryClient(
        _settings.factory_url,
        _settings.factory_api_key,
        timeout=_settings.factory_timeout_seconds,
        telemetry=telemetry,
    )
    init_state(app, engine, telemetry, factory)
    seed_admin(app.state.user_store)

    tasks = [asyncio.create_task(_purge_loop(app))]
    if _settings.metrics_url:
        tasks.append(asyncio.create_task(_system_metrics_loop(app)))
        tasks.append(asyncio.create_task(_active_users_loop(app)))
    logger.info("Database ready at %s; %d background task(s) started", _describe_db(_settings.database_url), len(tasks))

    yield

    for task in tasks:
        task.cancel()
    engine.dispose()
    logger.info("JWT Pizza service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="JWT Pizza API",
    description="Pizza ordering service: diners order, franchisees run stores, admins manage the menu.",
    version=_settings.version,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Captures wall-clock time around call_next and reports every response to the
# log and to telemetry (http-req event, request counters, per-path latency).
# Telemetry pushes are blocking HTTP calls and run in a worker thread.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    client = request.client.host if request.client else "unknown"
    logger.info("%s %s %d %.1fms %s", request.method, request.url.path, response.status_code, ms, client)
    telemetry = getattr(request.app.state, "telemetry", None)
    if telemetry is not None:
        await asyncio.to_thread(
            telemetry.http_request,
            request.method,
            request.url.path,
            response.status_code,
            ms,
            authorized="authorization" in request.headers,
            ip=client,
        )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(user_router, prefix="/api", tags=["Users"])
app.include_router(order_router, prefix="/api", tags=["Orders"])
app.include_router(franchise_router, prefix="/api", tags=["Franchises"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is {"message": ...}. PizzaError subclasses carry their own
# status code; infrastructure failures and anything unexpected get a generic
# 500 and a stack trace in the log, never in the response.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    body = ErrorResponse(message=message, **extra).model_dump(by_alias=True, exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


async def _report_exception(request: Request, exc: BaseException) -> None:
    telemetry = getattr(request.app.state, "telemetry", None)
    if telemetry is not None:
        await asyncio.to_thread(telemetry.exception, exc, request.url.path, request.method)


@app.exception_handler(PizzaError)
async def pizza_error_handler(request: Request, exc: PizzaError) -> JSONResponse:
    if isinstance(exc, InfrastructureError):
        logger.error("Infrastructure failure on %s %s", request.method, request.url.path, exc_info=exc)
        await _report_exception(request, exc)
        return _error(exc.status_code, exc.default_message)
    if isinstance(exc, FactoryError):
        await _report_exception(request, exc)
        return _error(exc.status_code, exc.message, follow_link_to_end_chaos=exc.report_url)
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        await _report_exception(request, exc)
    return _error(exc.status_code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = ", ".join(".".join(str(p) for p in err.get("loc", ())[1:]) or "body" for err in exc.errors())
    return _error(400, f"invalid request: {fields}" if fields else "invalid request")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return _error(404, "unknown endpoint")
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    await _report_exception(request, exc)
    return _error(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Service endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable.
# ---------------------------------------------------------------------------

_ENDPOINTS = [
    EndpointDoc(method="POST", path="/api/auth", requires_auth=False, description="Register a new user"),
    EndpointDoc(method="PUT", path="/api/auth", requires_auth=False, description="Login existing user"),
    EndpointDoc(method="DELETE", path="/api/auth", requires_auth=True, description="Logout a user"),
    EndpointDoc(method="GET", path="/api/user/me", requires_auth=True, description="Get authenticated user"),
    EndpointDoc(method="PUT", path="/api/user/:userId", requires_auth=True, description="Update user"),
    EndpointDoc(
        method="GET",
        path="/api/user?page=1&limit=10&name=*",
        requires_auth=True,
        description="Get a paginated list of users, optionally filtered by name",
    ),
    EndpointDoc(method="DELETE", path="/api/user/:userId", requires_auth=True, description="Delete a user"),
    EndpointDoc(method="GET", path="/api/order/menu", requires_auth=False, description="Get the pizza menu"),
    EndpointDoc(method="PUT", path="/api/order/menu", requires_auth=True, description="Add an item to the menu"),
    EndpointDoc(method="GET", path="/api/order?page=1", requires_auth=True, description="Get the orders for the authenticated user"),
    EndpointDoc(method="POST", path="/api/order", requires_auth=True, description="Create an order for the authenticated user"),
    EndpointDoc(
        method="GET",
        path="/api/franchise?page=1&limit=10&name=*",
        requires_auth=False,
        description="List all the franchises",
    ),
    EndpointDoc(method="GET", path="/api/franchise/:userId", requires_auth=True, description="List a user's franchises"),
    EndpointDoc(method="POST", path="/api/franchise", requires_auth=True, description="Create a new franchise"),
    EndpointDoc(method="DELETE", path="/api/franchise/:franchiseId", requires_auth=True, description="Delete a franchise"),
    EndpointDoc(
        method="POST",
        path="/api/franchise/:franchiseId/store",
        requires_auth=True,
        description="Create a new franchise store",
    ),
    EndpointDoc(
        method="DELETE",
        path="/api/franchise/:franchiseId/store/:storeId",
        requires_auth=True,
        description="Delete a store",
    ),
]


def _describe_db(db_url: str) -> str:
    """Driver and host of a database URL, without credentials or path."""
    url = make_url(db_url)
    return f"{url.drivername}://{url.host}" if url.host else url.drivername


@app.get("/", include_in_schema=False)
async def welcome() -> dict:
    return {"message": "welcome to JWT Pizza", "version": _settings.version}


@app.get("/api/docs", response_model=DocsResponse, tags=["Docs"])
async def api_docs() -> DocsResponse:
    return DocsResponse(
        version=_settings.version,
        endpoints=_ENDPOINTS,
        config={"factory": _settings.factory_url, "db": _describe_db(_settings.database_url)},
    )


@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and whether the database answers."""
    database = "ok"
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(select(1))
    except SQLAlchemyError as exc:
        logger.warning("Health check database probe failed: %s", exc)
        database = "error"
    return HealthResponse(version=_settings.version, components={"app": "ok", "database": database})
