"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from renewals.core.config import settings
from renewals.core.structured_logging import build_log_context, configure_logging
from renewals.db.session import engine
from renewals.services.renewal_service import RenewalServiceError

configure_logging()
logger = logging.getLogger(__name__)


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Renewals API",
    description="Renewal report reconciliation and renewals list queries",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Agency-Id"],
)


@app.exception_handler(RenewalServiceError)
async def renewal_service_error_handler(request: Request, exc: RenewalServiceError):
    """Last-resort mapping for service errors a router did not translate."""
    logger.error(
        "Unhandled renewal service error: %s",
        exc,
        extra=build_log_context(route=request.url.path, method=request.method),
    )
    return JSONResponse(status_code=500, content={"detail": "Renewal service error"})


# ============================================================================
# Routers
# ============================================================================

from renewals.routers import renewals_router  # noqa: E402

app.include_router(renewals_router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/healthz")
def healthz():
    """Liveness probe (no dependencies)."""
    return {"status": "ok"}


@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
