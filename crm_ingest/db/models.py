"""SQLAlchemy ORM models for the ingestion core and the collaborator tables it reads."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_ingest.db.base import Base
from crm_ingest.db.enums import DEFAULT_DEAL_STATUS, IdempotencyStatus
from crm_ingest.utils.datetime_parsing import utcnow

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in dev/tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")
# Monotonic ids for append-only logs (insertion order)
SequenceId = BigInteger().with_variant(Integer(), "sqlite")


# =============================================================================
# Collaborator Models (owned by administration flows, read by the core)
# =============================================================================

class Company(Base):
    """
    A tenant. Inbound BCC mail is routed to a company by its BCC address.
    """
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    inbound_bcc_address: Mapped[str | None] = mapped_column(
        String(320), unique=True, nullable=True
    )  # stored normalized (lowercase)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    users: Mapped[list["User"]] = relationship(back_populates="company")
    stages: Mapped[list["DealStage"]] = relationship(
        back_populates="company", order_by="DealStage.position"
    )


class User(Base):
    """An operator of the CRM; owner/actor for outbound activities."""
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("company_id", "email", name="uq_users_company_email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email_signature: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    company: Mapped["Company"] = relationship(back_populates="users")


class DealStage(Base):
    """Pipeline stage. New auto-created deals land in the lowest position."""
    __tablename__ = "deal_stages"
    __table_args__ = (
        Index("idx_deal_stages_company_position", "company_id", "position"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    company: Mapped["Company"] = relationship(back_populates="stages")


class ApiKey(Base):
    """
    API key issued to a third-party integration.

    Only the sha256 hash of the key is stored. Validation produces a
    Capability (company id + scopes) consumed by the webhook routes.
    """
    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    scopes: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# Core Models
# =============================================================================

class Person(Base):
    """
    A contact, unique per (company, normalized email).

    Created by the person matcher on first sighting. Never deleted here.
    """
    __tablename__ = "people"
    __table_args__ = (
        UniqueConstraint("company_id", "email", name="uq_people_company_email"),
        Index("idx_people_company_created", "company_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)  # normalized
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    organization_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    owner_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    last_contacted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class Activity(Base):
    """
    Immutable timeline entry linked to a person.

    Insertion order is the id order; nothing updates or deletes rows.
    """
    __tablename__ = "activities"
    __table_args__ = (
        Index("idx_activities_person", "person_id", "id"),
        Index("idx_activities_company_type", "company_id", "activity_type"),
    )

    id: Mapped[int] = mapped_column(SequenceId, primary_key=True, autoincrement=True)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False
    )
    person_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("people.id", ondelete="RESTRICT"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    deal_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("deals.id", ondelete="SET NULL"), nullable=True
    )
    activity_type: Mapped[str] = mapped_column(
        String(30), nullable=False
    )  # 'email_received' | 'email_sent' | 'meeting_booked' | 'form_submitted'
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    person: Mapped["Person"] = relationship()


class Deal(Base):
    """
    A sales opportunity in a pipeline stage.

    At most one open deal per person, enforced by a partial unique index.
    """
    __tablename__ = "deals"
    __table_args__ = (
        Index(
            "uq_deals_one_open_per_person",
            "person_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
        Index("idx_deals_company_stage", "company_id", "stage_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False
    )
    person_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("people.id", ondelete="RESTRICT"), nullable=False
    )
    stage_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("deal_stages.id", ondelete="RESTRICT"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_DEAL_STATUS, nullable=False
    )  # 'open' | 'won' | 'lost'
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    notes: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    person: Mapped["Person"] = relationship()
    stage: Mapped["DealStage"] = relationship()


class TrackingToken(Base):
    """
    Opaque identifier minted per outbound send.

    Maps to the originating email-sent activity and the links rewritten in
    that email. Immutable once issued.
    """
    __tablename__ = "tracking_tokens"
    __table_args__ = (
        Index("idx_tracking_tokens_token", "token", unique=True),
        Index("idx_tracking_tokens_activity", "activity_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False
    )
    activity_id: Mapped[int] = mapped_column(
        SequenceId, ForeignKey("activities.id", ondelete="RESTRICT"), nullable=False
    )
    links: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    activity: Mapped["Activity"] = relationship()
    events: Mapped[list["EngagementEvent"]] = relationship(
        back_populates="tracking_token", order_by="EngagementEvent.id"
    )


class EngagementEvent(Base):
    """
    Individual email open/click event.

    Append-only; every physical pixel fetch or redirect is its own row.
    """
    __tablename__ = "engagement_events"
    __table_args__ = (
        Index("idx_engagement_events_token", "tracking_token_id", "id"),
        Index("idx_engagement_events_type", "event_type"),
    )

    id: Mapped[int] = mapped_column(SequenceId, primary_key=True, autoincrement=True)
    tracking_token_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tracking_tokens.id", ondelete="CASCADE"), nullable=False
    )

    # Event type
    event_type: Mapped[str] = mapped_column(String(10), nullable=False)  # 'open' | 'click'

    # For clicks: the URL that was clicked
    url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Best-effort client metadata
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    tracking_token: Mapped["TrackingToken"] = relationship(back_populates="events")


class IdempotencyRecord(Base):
    """
    Ledger of processed external events, keyed by (channel, event key).

    The row is claimed in the same transaction as the side effects it guards
    and carries the result snapshot returned to retried deliveries.
    """
    __tablename__ = "idempotency_records"
    __table_args__ = (
        UniqueConstraint("channel", "event_key", name="uq_idempotency_channel_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel: Mapped[str] = mapped_column(String(30), nullable=False)
    event_key: Mapped[str] = mapped_column(String(255), nullable=False)
    company_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=IdempotencyStatus.PROCESSING.value, nullable=False
    )  # 'processing' | 'completed'
    result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
