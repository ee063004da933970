"""HR Ledger — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from hr_ledger import __version__
from hr_ledger.attendance.router import router as attendance_router
from hr_ledger.common.exceptions import register_exception_handlers
from hr_ledger.common.logging_utils import setup_logging
from hr_ledger.common.rate_limit import limiter
from hr_ledger.config import settings
from hr_ledger.core.router import companies_router, employees_router
from hr_ledger.database import engine
from hr_ledger.leave.router import router as leave_router
from hr_ledger.notifications.router import router as notifications_router
from hr_ledger.regularization.router import router as regularization_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("hr-ledger starting", extra={"environment": settings.ENVIRONMENT})
    yield
    await engine.dispose()
    logger.info("hr-ledger stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    app = FastAPI(
        title="HR Ledger",
        description="Attendance, regularization and leave ledger",
        version=__version__,
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(companies_router, prefix="/api/v1/companies", tags=["companies"])
    app.include_router(employees_router, prefix="/api/v1/employees", tags=["employees"])
    app.include_router(attendance_router, prefix="/api/v1/attendance", tags=["attendance"])
    app.include_router(
        regularization_router, prefix="/api/v1/regularizations", tags=["regularization"],
    )
    app.include_router(leave_router, prefix="/api/v1/leave", tags=["leave"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["notifications"])

    return app


app = create_app()
