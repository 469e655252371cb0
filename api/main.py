"""
Main FastAPI application for the lead qualification engine.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .middleware.metrics import MetricsMiddleware, metrics_endpoint
from .routes import conversations, support
from .services import get_services, initialize_services
from config.settings import get_settings
from qualification.errors import (
    BusinessRuleError,
    ConversationNotFoundError,
    QualificationError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Lead qualification engine starting up...")

    # Initialize database (if configured)
    if settings.database_url:
        try:
            from database.session import init_db
            await init_db(settings.database_url)
        except Exception as e:
            logger.warning(f"Database init failed (running with in-memory state): {e}")

    initialize_services()

    # Periodic retry of undelivered handoffs
    drain_task = None
    router = get_services().handoff_router
    if router and router.enabled:
        drain_task = asyncio.create_task(router.run_drain_loop(settings.handoff_drain_interval_seconds))
        logger.info(f"Handoff queue drained every {settings.handoff_drain_interval_seconds}s")

    logger.info("Lead qualification engine ready")
    yield
    logger.info("Lead qualification engine shutting down...")

    if drain_task:
        drain_task.cancel()
        try:
            await drain_task
        except asyncio.CancelledError:
            pass

    if router and router.queue_size():
        logger.warning(f"{router.queue_size()} handoff request(s) still queued at shutdown")

    if settings.database_url:
        from database.session import close_db
        await close_db()


STATUS_BY_ERROR = [
    (ConversationNotFoundError, 404),
    (ValidationError, 422),
    (BusinessRuleError, 409),
]


async def qualification_error_handler(request: Request, exc: QualificationError):
    status = next((code for cls, code in STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    if status >= 409:
        logger.info(f"{request.method} {request.url.path} -> {status}: {exc.message}")
    return JSONResponse(status_code=status, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        description="Consultative SPIN/BANT lead qualification and customer support conversations.",
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(QualificationError, qualification_error_handler)

    app.include_router(conversations.router, prefix="/api/v1", tags=["Conversations"])
    app.include_router(support.router, prefix="/api/v1", tags=["Support"])

    # Prometheus metrics endpoint
    app.get("/metrics", tags=["Monitoring"])(metrics_endpoint)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "service": settings.api_title,
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
        }

    # Health check
    @app.get("/health")
    async def health():
        services = get_services()
        return {
            "status": "healthy" if services.is_ready else "degraded",
            "services": services.health(),
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    s = get_settings()
    uvicorn.run(app, host=s.api_host, port=s.api_port)
