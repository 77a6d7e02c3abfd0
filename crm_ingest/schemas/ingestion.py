"""Request/response contracts for the ingestion channels."""

from datetime import datetime
from email.utils import formataddr, getaddresses
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from crm_ingest.db.enums import IngestionChannel, IngestionState


class BCCEmailPayload(BaseModel):
    """Inbound email forwarded to a company's BCC address."""
    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(
        ..., min_length=3, max_length=320, validation_alias=AliasChoices("from", "sender")
    )
    to: list[str] = Field(default_factory=list, max_length=100)
    subject: str = Field("", max_length=998)
    body: str = Field("", max_length=1_000_000)
    timestamp: datetime
    bcc_address: str = Field(
        ..., min_length=3, max_length=320, validation_alias=AliasChoices("bcc_address", "bccAddress")
    )

    @field_validator("to", mode="before")
    @classmethod
    def _coerce_recipients(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [formataddr(pair) for pair in getaddresses([value]) if pair[1].strip()]
        return value


class FormSubmissionPayload(BaseModel):
    """Marketing form submission."""
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., min_length=3, max_length=320)
    first_name: str | None = Field(
        None, max_length=255, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: str | None = Field(
        None, max_length=255, validation_alias=AliasChoices("last_name", "lastName")
    )
    phone: str | None = Field(None, max_length=50)
    company: str | None = Field(None, max_length=255)
    source: str | None = Field(None, max_length=100)
    nonce: str | None = Field(None, max_length=255)
    meta: dict[str, Any] = Field(default_factory=dict)


class TrackingOpenPayload(BaseModel):
    token: str = Field(..., max_length=128)
    ip_address: str | None = Field(None, max_length=45)
    user_agent: str | None = None


class TrackingClickPayload(TrackingOpenPayload):
    url: str = Field("", max_length=8192)


class IngestionResult(BaseModel):
    """Outcome of one gateway call."""
    channel: IngestionChannel
    state: IngestionState
    duplicate: bool = False
    event_key: str | None = None
    result: dict[str, Any] = Field(default_factory=dict)


class BCCEmailResponse(BaseModel):
    processed: bool
    person_id: UUID | None = None
    activity_id: int | None = None
    person_created: bool = False
    duplicate: bool = False


class FormSubmissionResponse(BaseModel):
    """
    Outcome of a form submission.

    A delivery with a new nonce or Idempotency-Key is a new visit: a returning
    person reports created=false and no new deal. Re-sending the same body
    without either is a redelivery and echoes the first response unchanged
    (so created may be true) with duplicate=true.
    """
    person_id: UUID
    deal_id: UUID | None = None
    created: bool
    deal_created: bool = False
    activity_id: int | None = None
    duplicate: bool = False
