"""
Email Tracking Router.

Public endpoints for recording email opens and link clicks.
These endpoints must be unauthenticated since they're called from email clients,
and they never fail: the pixel or the redirect is always served.
"""

import base64
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from crm_ingest.core.deps import get_db, require_scope
from crm_ingest.core.security import Capability
from crm_ingest.db.enums import ApiScope, IngestionChannel
from crm_ingest.schemas.outreach import EngagementSummaryRead
from crm_ingest.services import ingestion_service, tracking_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tracking", tags=["tracking"])

# 1x1 transparent GIF
TRANSPARENT_GIF = base64.b64decode("R0lGODlhAQABAIAAAP///wAAACH5BAEAAAAALAAAAAABAAEAAAICRAEAOw==")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _client_info(request: Request) -> tuple[str | None, str | None]:
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


@router.get("/open/{token}")
def track_open(
    token: str,
    request: Request,
    db: Session = Depends(get_db),
) -> Response:
    """
    Record an email open event and return a 1x1 transparent GIF.

    Called when email client loads the tracking pixel.
    """
    ip_address, user_agent = _client_info(request)

    # Best effort: unknown tokens and storage failures still get the pixel
    try:
        ingestion_service.ingest(
            db,
            IngestionChannel.TRACKING_OPEN,
            {"token": token, "ip_address": ip_address, "user_agent": user_agent},
        )
    except Exception as e:
        logger.warning(f"Failed to record open: {e}")

    return Response(content=TRANSPARENT_GIF, media_type="image/gif", headers=NO_CACHE_HEADERS)


@router.get("/click/{token}")
def track_click(
    token: str,
    request: Request,
    url: str = "",
    db: Session = Depends(get_db),
) -> Response:
    """
    Record a link click event and redirect to the original URL.

    Unsafe or missing destinations redirect to the configured fallback.
    """
    ip_address, user_agent = _client_info(request)

    redirect_url = None
    try:
        outcome = ingestion_service.ingest(
            db,
            IngestionChannel.TRACKING_CLICK,
            {"token": token, "url": url, "ip_address": ip_address, "user_agent": user_agent},
        )
        redirect_url = outcome.result.get("redirect_url")
    except Exception as e:
        logger.warning(f"Failed to record click: {e}")

    return RedirectResponse(
        url=redirect_url or tracking_service.safe_redirect_target(url),
        status_code=302,
        headers=NO_CACHE_HEADERS,
    )


@router.get("/tokens/{token}/summary", response_model=EngagementSummaryRead)
def get_engagement_summary(
    token: str,
    capability: Capability = Depends(require_scope(ApiScope.OUTREACH_WRITE)),
    db: Session = Depends(get_db),
):
    """Open/click counts for one tracked send."""
    tracking_token = tracking_service.get_token(db, token, company_id=capability.company_id)
    if not tracking_token:
        raise HTTPException(status_code=404, detail="Tracking token not found")
    return tracking_service.engagement_summary(db, tracking_token)
