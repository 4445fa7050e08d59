"""
api/main.py -- FastAPI application entry point for VulnWatch.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the component graph once and hangs it on app.state:

  inventory  InventoryStore         (DATABASE_URL)
  user_store UserStore              (AUTH_DATABASE_URL)
  resolver   ClassificationResolver
  versions   VersionChain
  bookkeeper SyncBookkeeper
  reconciler Reconciler
  enricher   VulnerabilityEnricher  (EPSS / CISA KEV priority)
  scheduler  SyncScheduler

When SYNC_SCHEDULER_ENABLED is true a background task runs a scheduler pass
every SYNC_POLL_SECONDS. Otherwise scheduling is left to cron
(`python main.py sync`) or POST /api/v1/integrations/sync-due.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.artifacts import router as artifacts_router
from api.routes.v1.assets import router as assets_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.device_artifacts import router as device_artifacts_router
from api.routes.v1.device_groups import router as device_groups_router
from api.routes.v1.integrations import router as integrations_router
from api.routes.v1.remediations import router as remediations_router
from api.routes.v1.vulnerabilities import router as vulnerabilities_router
from auth.store import UserStore
from core.config import Settings, get_settings
from inventory.classification import ClassificationResolver
from inventory.errors import InvalidInputError, LockTimeoutError, NotFoundError
from inventory.store import InventoryStore
from inventory.versions import VersionChain
from sync.bookkeeping import SyncBookkeeper
from sync.enrichment import VulnerabilityEnricher
from sync.fetcher import fetch_partner_batch
from sync.reconciler import Reconciler
from sync.scheduler import SyncScheduler

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("vulnwatch.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def attach_components(state, inventory: InventoryStore, user_store: UserStore, settings: Settings) -> None:
    """Build the sync component graph around the given stores and put it on state.

    Shared by the real lifespan and the test fixtures so both run the same graph.
    """
    state.inventory = inventory
    state.user_store = user_store
    state.resolver = ClassificationResolver(inventory, max_workers=settings.resolver_workers)
    state.versions = VersionChain(inventory)
    state.bookkeeper = SyncBookkeeper(inventory, keep=settings.sync_history_limit)
    state.reconciler = Reconciler(inventory, state.resolver, state.versions, state.bookkeeper)
    state.enricher = VulnerabilityEnricher(inventory)
    state.scheduler = SyncScheduler(
        inventory,
        state.reconciler,
        state.bookkeeper,
        fetcher=fetch_partner_batch,
        page_size=settings.partner_page_size,
        timeout=settings.partner_timeout_seconds,
        max_pages=settings.partner_max_pages,
    )


# ---------------------------------------------------------------------------
# Background scheduler task
# ---------------------------------------------------------------------------


async def _sync_loop(app: FastAPI, interval: int) -> None:
    """Run a scheduler pass every `interval` seconds until cancelled.

    The pass itself is blocking database and HTTP work, so it runs in a worker
    thread. A failed pass is logged and the loop keeps going.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.scheduler.run_due)
        except Exception:
            logger.exception("Scheduled sync pass failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores on startup, close them on shutdown."""
    settings = get_settings()
    logger.info("VulnWatch API starting up")
    attach_components(
        app.state,
        InventoryStore(settings.database_url),
        UserStore(settings.auth_database_url),
        settings,
    )
    logger.info("Stores initialized")
    if not app.state.user_store.has_users():
        logger.warning("No user accounts exist yet; run 'python main.py create-user NAME --role admin'")

    sync_task: Optional[asyncio.Task] = None
    if settings.sync_scheduler_enabled:
        sync_task = asyncio.create_task(_sync_loop(app, settings.sync_poll_seconds))
        logger.info("In-process sync scheduler enabled (every %ds)", settings.sync_poll_seconds)

    yield

    if sync_task is not None:
        sync_task.cancel()
        with suppress(asyncio.CancelledError):
            await sync_task
    app.state.inventory.close()
    app.state.user_store.close()
    logger.info("VulnWatch API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="VulnWatch API",
    description="Device inventory, vulnerability and remediation tracking fed by partner integrations.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(assets_router, prefix="/api/v1", tags=["Assets"])
app.include_router(vulnerabilities_router, prefix="/api/v1", tags=["Vulnerabilities"])
app.include_router(device_artifacts_router, prefix="/api/v1", tags=["Device Artifacts"])
app.include_router(remediations_router, prefix="/api/v1", tags=["Remediations"])
app.include_router(artifacts_router, prefix="/api/v1", tags=["Artifacts"])
app.include_router(device_groups_router, prefix="/api/v1", tags=["Device Groups"])
app.include_router(integrations_router, prefix="/api/v1", tags=["Integrations"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
    """Domain rule violations raised below the route layer (wrong batch kind, bad artifact type).

    Plain ValueErrors are bugs and fall through to the 500 handler.
    """
    return _error(422, "validation_error", str(exc))


@app.exception_handler(LockTimeoutError)
async def lock_timeout_handler(request: Request, exc: LockTimeoutError) -> JSONResponse:
    response = _error(503, "busy", "Another writer is updating this artifact. Retry shortly.")
    response.headers["Retry-After"] = "5"
    return response


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    code = exc.resource.lower().replace(" ", "_") + "_not_found"
    return _error(404, code, str(exc))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """A UNIQUE attribute (hostname, MAC, serial number, CVE id) is already taken."""
    logger.info("Conflict on %s %s: %s", request.method, request.url.path, exc.orig)
    return _error(409, "conflict", "A record with the same unique attribute already exists.")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump()."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. Details go to the log, never the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint -- no auth, no rate limit
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a database round-trip check."""
    components = {"app": "ok", "database": "ok"}
    try:
        request.app.state.inventory.ping()
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
