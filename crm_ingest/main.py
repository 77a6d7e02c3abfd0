"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from crm_ingest.core.config import settings
from crm_ingest.core.structured_logging import configure_logging
from crm_ingest.db.session import engine
from crm_ingest.services.errors import (
    PermissionDeniedError,
    ProcessingError,
    UnsupportedChannelError,
    ValidationError,
)

configure_logging()

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # Payloads carry contact emails
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from crm_ingest.core.rate_limit import limiter

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="CRM Ingestion API",
    description="Event ingestion core: BCC email, form leads and email engagement tracking",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ============================================================================
# Ingestion Errors
# ============================================================================


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})


@app.exception_handler(UnsupportedChannelError)
async def unsupported_channel_handler(request: Request, exc: UnsupportedChannelError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(ProcessingError)
async def processing_error_handler(request: Request, exc: ProcessingError):
    # Nothing was committed; the sender should redeliver
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "retryable": exc.retryable},
        headers={"Retry-After": "5"},
    )


# ============================================================================
# Routers
# ============================================================================

from crm_ingest.routers import outreach, people, tracking, webhooks

# Inbound webhooks (BCC email, form submissions)
app.include_router(webhooks.router)

# Email Tracking (public endpoints for pixel/click tracking)
app.include_router(tracking.router)

# Outbound composition and meetings (API key)
app.include_router(outreach.router)

# Person timelines (API key)
app.include_router(people.router)


@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
