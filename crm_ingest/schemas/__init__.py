"""Pydantic schemas for API request/response models."""

from crm_ingest.schemas.ingestion import (
    BCCEmailPayload,
    BCCEmailResponse,
    FormSubmissionPayload,
    FormSubmissionResponse,
    IngestionResult,
    TrackingClickPayload,
    TrackingOpenPayload,
)
from crm_ingest.schemas.outreach import (
    ActivityRead,
    EngagementSummaryRead,
    MeetingCreate,
    TrackedEmailCreate,
    TrackedEmailRead,
)

__all__ = [
    "ActivityRead",
    "BCCEmailPayload",
    "BCCEmailResponse",
    "EngagementSummaryRead",
    "FormSubmissionPayload",
    "FormSubmissionResponse",
    "IngestionResult",
    "MeetingCreate",
    "TrackedEmailCreate",
    "TrackedEmailRead",
    "TrackingClickPayload",
    "TrackingOpenPayload",
]
