import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pagehost.api.tenant import router as tenant_router
from pagehost.api.v1.router import api_router
from pagehost.core.config import settings
from pagehost.core.database import database
from pagehost.core.dependencies import shutdown_dependencies
from pagehost.core.exceptions import register_exception_handlers
from pagehost.core.logging import setup_logging
from pagehost.services.deployment_service import fail_orphaned_runs

# Initialize structured logging before anything else
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("PageHost starting up")
    await database.init(create_all=settings.DB_CREATE_ALL)
    await fail_orphaned_runs(database.session_factory)
    yield
    logger.info("PageHost shutting down")
    await shutdown_dependencies()
    await database.dispose()


app = FastAPI(
    title="PageHost",
    description="Custom domain provisioning and host-based routing for landing pages",
    version="0.1.0",
    lifespan=lifespan,
)

# Register global exception handlers (domain errors, validation, DB, generic)
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Log every request with method, host, path, status, duration, and request ID."""
    # Generate a unique request ID for correlation
    request_id = uuid.uuid4().hex[:12]
    request.state.request_id = request_id

    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as exc:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.error(
            "[%s] %s %s%s -> 500 (%.1fms) %s",
            request_id,
            request.method,
            request.headers.get("host", ""),
            request.url.path,
            duration_ms,
            str(exc),
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
            headers={"X-Request-ID": request_id},
        )

    duration_ms = (time.perf_counter() - start) * 1000

    # Skip logging health checks to reduce noise
    if request.url.path == "/health":
        response.headers["X-Request-ID"] = request_id
        return response

    log_fn = logger.warning if response.status_code >= 400 else logger.info
    log_fn(
        "[%s] %s %s%s -> %d (%.1fms)",
        request_id,
        request.method,
        request.headers.get("host", ""),
        request.url.path,
        response.status_code,
        duration_ms,
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.get("/health")
async def health_check():
    db_ok = await database.ping() if database.is_ready() else False
    return {"status": "ok", "database": "ready" if db_ok else "unavailable"}


app.include_router(api_router)
# Catch-all tenant routing must stay last
app.include_router(tenant_router)
