"""Inbound webhooks: BCC email capture and marketing form submissions."""

import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from crm_ingest.core.config import settings
from crm_ingest.core.deps import get_capability, get_db
from crm_ingest.core.rate_limit import limiter, webhook_limit
from crm_ingest.core.security import Capability
from crm_ingest.db.enums import IngestionChannel
from crm_ingest.schemas.ingestion import BCCEmailResponse, FormSubmissionResponse
from crm_ingest.services import ingestion_service
from crm_ingest.services.errors import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _read_json(request: Request) -> dict:
    content_length = request.headers.get("content-length", "0")
    try:
        if int(content_length) > settings.WEBHOOK_MAX_PAYLOAD_BYTES:
            raise HTTPException(413, "Payload too large")
    except ValueError:
        pass

    body = await request.body()
    if len(body) > settings.WEBHOOK_MAX_PAYLOAD_BYTES:
        # Chunked uploads carry no Content-Length
        raise HTTPException(413, "Payload too large")
    try:
        data = json.loads(body or b"null")
    except json.JSONDecodeError:
        raise ValidationError.for_field("payload", "Invalid JSON")
    if not isinstance(data, dict):
        raise ValidationError.for_field("payload", "Payload must be a JSON object")
    return data


@router.post("/bcc-email", response_model=BCCEmailResponse)
@limiter.limit(webhook_limit)
async def receive_bcc_email(
    request: Request,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
):
    """
    Capture an email that was BCC'd to a company's inbound address.

    Redeliveries of the same email return the first result with
    duplicate=true.
    """
    data = await _read_json(request)
    outcome = ingestion_service.ingest(
        db, IngestionChannel.BCC_EMAIL, data, event_key=idempotency_key
    )
    return BCCEmailResponse(**outcome.result, duplicate=outcome.duplicate)


@router.post("/form-submission", response_model=FormSubmissionResponse)
@limiter.limit(webhook_limit)
async def receive_form_submission(
    request: Request,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    capability: Capability = Depends(get_capability),
    db: Session = Depends(get_db),
):
    """
    Capture a lead from a marketing form.

    Requires an API key with the leads:create scope.
    """
    data = await _read_json(request)
    outcome = ingestion_service.ingest(
        db,
        IngestionChannel.FORM_SUBMISSION,
        data,
        event_key=idempotency_key,
        capability=capability,
    )
    return FormSubmissionResponse(**outcome.result, duplicate=outcome.duplicate)
