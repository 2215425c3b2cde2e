"""
Operations Portal - Main Application Entry Point
Multi-tenant B2B portal where every tenant can act as client, vendor, or both
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from opsportal.core.config import get_settings
from opsportal.core.errors import PortalError, RateLimited
from opsportal.core.events import event_bus
from opsportal.core.rate_limit import SlidingWindowRateLimiter
from opsportal.api import auth, portal, cases, payments, invoices, relationships
from opsportal.services.evidence_storage import HttpEvidenceStorage
from opsportal.services.identity_provider import IdentityProviderGateway
from opsportal.services.notifications import register_notification_handlers
from opsportal.services.session_sync import SessionClaimsSynchronizer

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Initializing Operations Portal backend", environment=settings.ENVIRONMENT)
    # Tables are created by Alembic migrations, not auto-generated
    gateway = IdentityProviderGateway(settings)
    storage = HttpEvidenceStorage(settings)
    rate_limiter = SlidingWindowRateLimiter(window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS)

    app.state.identity_gateway = gateway
    app.state.evidence_storage = storage
    app.state.synchronizer = SessionClaimsSynchronizer(gateway, rate_limiter, settings)
    register_notification_handlers(event_bus)

    yield

    # Shutdown
    event_bus.clear_subscribers()
    await gateway.aclose()
    await storage.aclose()
    logger.info("Shutting down Operations Portal backend")


# Create FastAPI application
app = FastAPI(
    title="Operations Portal API",
    description="Multi-tenant B2B operations portal with dual client/vendor contexts",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure middleware stack
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    """Render every portal error as {error, message, details}"""
    logger.warning(
        "Request failed",
        path=request.url.path,
        method=request.method,
        error=exc.code,
        status_code=exc.status_code,
    )
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# Include routers
prefix = settings.API_V1_PREFIX
app.include_router(auth.router, prefix=f"{prefix}/auth", tags=["auth"])
app.include_router(portal.router, prefix=f"{prefix}/portal", tags=["portal"])
app.include_router(cases.router, prefix=f"{prefix}/cases", tags=["cases"])
app.include_router(payments.router, prefix=f"{prefix}/payments", tags=["payments"])
app.include_router(invoices.router, prefix=f"{prefix}/invoices", tags=["invoices"])
app.include_router(relationships.router, prefix=f"{prefix}/relationships", tags=["relationships"])


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "operations-portal-api"}


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Operations Portal API",
        "version": "1.0.0",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "opsportal.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level="info",
    )
