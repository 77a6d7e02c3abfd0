"""Baseline migration - ingestion core tables

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Collaborator tables (companies, users, deal stages, API keys) plus people,
activities, deals, tracking tokens, engagement events and the idempotency
ledger.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
SequenceId = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    """Create ingestion tables."""

    # ==========================================================================
    # Companies / Users / Stages / API keys
    # ==========================================================================
    op.create_table(
        'companies',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('inbound_bcc_address', sa.String(320), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('email_signature', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint('company_id', 'email', name='uq_users_company_email'),
    )

    op.create_table(
        'deal_stages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('idx_deal_stages_company_position', 'deal_stages', ['company_id', 'position'])

    op.create_table(
        'api_keys',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('key_hash', sa.String(64), nullable=False, unique=True),
        sa.Column('scopes', JSONType, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==========================================================================
    # People
    # ==========================================================================
    op.create_table(
        'people',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('first_name', sa.String(255), nullable=False),
        sa.Column('last_name', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('organization_name', sa.String(255), nullable=True),
        sa.Column('source', sa.String(100), nullable=True),
        sa.Column('owner_user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('last_contacted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('company_id', 'email', name='uq_people_company_email'),
    )
    op.create_index('idx_people_company_created', 'people', ['company_id', 'created_at'])

    # ==========================================================================
    # Deals (one open deal per person)
    # ==========================================================================
    op.create_table(
        'deals',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('person_id', sa.Uuid(), sa.ForeignKey('people.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('stage_id', sa.Uuid(), sa.ForeignKey('deal_stages.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('value', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('notes', JSONType, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'uq_deals_one_open_per_person',
        'deals',
        ['person_id'],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
        sqlite_where=sa.text("status = 'open'"),
    )
    op.create_index('idx_deals_company_stage', 'deals', ['company_id', 'stage_id'])

    # ==========================================================================
    # Activities (append-only timeline)
    # ==========================================================================
    op.create_table(
        'activities',
        sa.Column('id', SequenceId, primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('person_id', sa.Uuid(), sa.ForeignKey('people.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('deal_id', sa.Uuid(), sa.ForeignKey('deals.id', ondelete='SET NULL'), nullable=True),
        sa.Column('activity_type', sa.String(30), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('details', JSONType, nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_activities_person', 'activities', ['person_id', 'id'])
    op.create_index('idx_activities_company_type', 'activities', ['company_id', 'activity_type'])

    # ==========================================================================
    # Email tracking
    # ==========================================================================
    op.create_table(
        'tracking_tokens',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('token', sa.String(64), nullable=False),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('activity_id', SequenceId, sa.ForeignKey('activities.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('links', JSONType, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_tracking_tokens_token', 'tracking_tokens', ['token'], unique=True)
    op.create_index('idx_tracking_tokens_activity', 'tracking_tokens', ['activity_id'])

    op.create_table(
        'engagement_events',
        sa.Column('id', SequenceId, primary_key=True, autoincrement=True),
        sa.Column('tracking_token_id', sa.Uuid(), sa.ForeignKey('tracking_tokens.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(10), nullable=False),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_engagement_events_token', 'engagement_events', ['tracking_token_id', 'id'])
    op.create_index('idx_engagement_events_type', 'engagement_events', ['event_type'])

    # ==========================================================================
    # Idempotency ledger
    # ==========================================================================
    op.create_table(
        'idempotency_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('channel', sa.String(30), nullable=False),
        sa.Column('event_key', sa.String(255), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='processing'),
        sa.Column('result', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('channel', 'event_key', name='uq_idempotency_channel_key'),
    )


def downgrade() -> None:
    """Drop ingestion tables."""
    op.drop_table('idempotency_records')
    op.drop_table('engagement_events')
    op.drop_table('tracking_tokens')
    op.drop_table('activities')
    op.drop_table('deals')
    op.drop_table('people')
    op.drop_table('api_keys')
    op.drop_table('deal_stages')
    op.drop_table('users')
    op.drop_table('companies')
