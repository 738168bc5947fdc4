"""
FastAPI application entry point.

Run with:
    uvicorn groupsos.main:app --reload --port 8000

Set DATABASE_URL=memory:// to run without PostgreSQL.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from groupsos.core.config import settings
from groupsos.core.logging_config import setup_logging, get_logger
from groupsos.core.errors import register_error_handlers
from groupsos.core.middleware import RequestLoggingMiddleware
from groupsos.core.health import HealthStatus, run_health_check
from groupsos.core.database import close_db, init_db
from groupsos.services import Services, build_default_services

# ── API routers ──
from groupsos.api.v1.auth import router as auth_router
from groupsos.api.v1.groups import router as groups_router
from groupsos.api.v1.alerts import router as alerts_router
from groupsos.api.v1.push import router as push_router
from groupsos.api.v1.live import router as live_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    services: Services = app.state.services
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    if services.uses_database:
        await init_db()
    yield
    # Shutdown: live sockets are closed by the server; just forget them
    services.registry.clear()
    if services.uses_database:
        await close_db()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Group emergency alerting. Members of small groups raise an SOS "
            "that reaches every other member over a live WebSocket or, when "
            "they are offline, a Web Push notification; anyone can answer "
            "and the whole group sees who is responding."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services or build_default_services(settings)

    # ── Middleware stack (order matters — outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(auth_router)
    app.include_router(groups_router)
    app.include_router(alerts_router)
    app.include_router(push_router)
    app.include_router(live_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": ["groups", "alerts", "live", "web-push"],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — checks all subsystems."""
        report = await run_health_check(app.state.services)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(app.state.services)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
