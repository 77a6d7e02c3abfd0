"""Outbound email and meeting endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from crm_ingest.core.deps import get_db, require_scope
from crm_ingest.core.security import Capability
from crm_ingest.db.enums import ApiScope
from crm_ingest.schemas.outreach import (
    ActivityRead,
    MeetingCreate,
    TrackedEmailCreate,
    TrackedEmailRead,
)
from crm_ingest.services import outreach_service
from crm_ingest.services.errors import InvalidPersonError

router = APIRouter(prefix="/outreach", tags=["outreach"])


@router.post("/emails/tracked", response_model=TrackedEmailRead, status_code=201)
def compose_tracked_email(
    data: TrackedEmailCreate,
    capability: Capability = Depends(require_scope(ApiScope.OUTREACH_WRITE)),
    db: Session = Depends(get_db),
):
    """
    Log an outbound email and return its body rewritten for tracking.

    Delivery is the caller's job; this only records and prepares.
    """
    try:
        composed = outreach_service.compose_tracked_email(db, capability.company_id, data)
    except InvalidPersonError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    db.commit()

    return TrackedEmailRead(
        activity_id=composed.activity.id,
        tracking_token=composed.tracking.token if composed.tracking else None,
        pixel_url=composed.tracking.pixel_url if composed.tracking and data.track_opens else None,
        tracked_links=composed.tracked_links,
        body=composed.body,
    )


@router.post("/meetings", response_model=ActivityRead, status_code=201)
def book_meeting(
    data: MeetingCreate,
    capability: Capability = Depends(require_scope(ApiScope.OUTREACH_WRITE)),
    db: Session = Depends(get_db),
):
    try:
        activity = outreach_service.book_meeting(db, capability.company_id, data)
    except InvalidPersonError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    db.commit()
    db.refresh(activity)
    return activity
