"""Idempotency ledger for inbound events.

One row per (channel, event key). The row is claimed with an insert-if-absent
at the start of the unit of work and completed with the result snapshot
before the same transaction commits, so domain writes and the ledger entry
are persisted (or discarded) together.
"""

import hashlib
import logging
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_ingest.core.structured_logging import build_log_context
from crm_ingest.db.enums import IdempotencyStatus
from crm_ingest.db.models import IdempotencyRecord
from crm_ingest.services.errors import ConflictError, DuplicateEventError
from crm_ingest.utils.datetime_parsing import utcnow

logger = logging.getLogger(__name__)


def build_event_key(*parts: Any) -> str:
    """Stable sha256 over the given parts (None is treated as empty)."""
    material = "|".join("" if part is None else str(part) for part in parts)
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def get_record(db: Session, channel: str, event_key: str) -> IdempotencyRecord | None:
    return (
        db.query(IdempotencyRecord)
        .filter(
            IdempotencyRecord.channel == channel,
            IdempotencyRecord.event_key == event_key,
        )
        .first()
    )


def lookup(db: Session, channel: str, event_key: str) -> dict[str, Any] | None:
    """Return the stored result for a completed key, else None."""
    record = get_record(db, channel, event_key)
    if record and record.status == IdempotencyStatus.COMPLETED.value:
        return record.result
    return None


def claim(
    db: Session,
    channel: str,
    event_key: str,
    company_id: UUID | None = None,
) -> IdempotencyRecord:
    """
    Claim an event key for processing (insert if absent).

    Raises:
        DuplicateEventError: key already completed (carries the stored result)
        ConflictError: key held by a claim that never completed
    """
    existing = lookup(db, channel, event_key)
    if existing is not None:
        raise DuplicateEventError(channel, event_key, existing)

    record = IdempotencyRecord(
        channel=channel,
        event_key=event_key,
        company_id=company_id,
        status=IdempotencyStatus.PROCESSING.value,
    )
    try:
        with db.begin_nested():
            db.add(record)
            db.flush()
        return record
    except IntegrityError:
        # Lost the insert race; the winner's row is now visible
        logger.info(
            "Idempotency claim lost race",
            extra=build_log_context(channel=channel, event_key=event_key),
        )
        winner = get_record(db, channel, event_key)
        if winner and winner.status == IdempotencyStatus.COMPLETED.value:
            raise DuplicateEventError(channel, event_key, winner.result or {})
        raise ConflictError(f"Event key is being processed for channel={channel}")


def complete(db: Session, record: IdempotencyRecord, result: dict[str, Any]) -> IdempotencyRecord:
    """Store the result snapshot on a claimed record. Caller commits."""
    record.status = IdempotencyStatus.COMPLETED.value
    record.result = result
    record.completed_at = utcnow()
    db.flush()
    return record
