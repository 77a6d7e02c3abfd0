"""Person timeline endpoint."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from crm_ingest.core.deps import get_db, require_scope
from crm_ingest.core.security import Capability
from crm_ingest.db.enums import ApiScope
from crm_ingest.schemas.outreach import ActivityRead
from crm_ingest.services import activity_service, person_service

router = APIRouter(prefix="/people", tags=["people"])


@router.get("/{person_id}/timeline", response_model=list[ActivityRead])
def get_timeline(
    person_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    after_id: int | None = Query(None, ge=0),
    capability: Capability = Depends(require_scope(ApiScope.PEOPLE_READ)),
    db: Session = Depends(get_db),
):
    """Activities for a person, oldest first. Page with after_id."""
    person = person_service.get_person(db, capability.company_id, person_id)
    if not person:
        raise HTTPException(status_code=404, detail="Person not found")
    return activity_service.list_timeline(
        db, capability.company_id, person.id, limit=limit, after_id=after_id
    )
