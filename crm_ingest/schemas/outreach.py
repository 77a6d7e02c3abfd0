"""Schemas for outbound email composition, meetings and timelines."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class TrackedEmailCreate(BaseModel):
    """Request to compose an outbound email with tracking."""
    person_id: UUID
    from_user_id: UUID
    subject: str = Field(..., min_length=1, max_length=998)
    body: str = Field(..., min_length=1)
    track_opens: bool = True
    track_clicks: bool = True


class TrackedEmailRead(BaseModel):
    activity_id: int
    tracking_token: str | None = None
    pixel_url: str | None = None
    tracked_links: dict[str, str] = Field(default_factory=dict)
    body: str


class MeetingCreate(BaseModel):
    """Request to book a meeting with a person."""
    person_id: UUID
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def _check_window(self) -> "MeetingCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class ActivityRead(BaseModel):
    id: int
    person_id: UUID
    user_id: UUID | None
    deal_id: UUID | None
    activity_type: str
    title: str
    summary: str | None
    details: dict[str, Any]
    occurred_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class EngagementSummaryRead(BaseModel):
    token: str
    activity_id: int
    open_count: int
    click_count: int
    first_opened_at: datetime | None = None
    last_opened_at: datetime | None = None
    first_clicked_at: datetime | None = None
    last_clicked_at: datetime | None = None
