"""Tests for the idempotency ledger."""

import pytest

from crm_ingest.db.enums import IdempotencyStatus
from crm_ingest.db.models import IdempotencyRecord
from crm_ingest.services import idempotency_service
from crm_ingest.services.errors import ConflictError, DuplicateEventError


def test_build_event_key_is_stable_and_order_sensitive():
    key = idempotency_service.build_event_key("form_submission", "a@b.com", None, "n1")

    assert key == idempotency_service.build_event_key("form_submission", "a@b.com", "", "n1")
    assert key != idempotency_service.build_event_key("form_submission", "n1", "", "a@b.com")
    assert len(key) == 64


def test_claim_then_complete_then_duplicate(db):
    record = idempotency_service.claim(db, "bcc_email", "key-1")
    assert record.status == IdempotencyStatus.PROCESSING.value
    assert idempotency_service.lookup(db, "bcc_email", "key-1") is None

    idempotency_service.complete(db, record, {"person_id": "p1"})
    db.commit()

    assert idempotency_service.lookup(db, "bcc_email", "key-1") == {"person_id": "p1"}
    with pytest.raises(DuplicateEventError) as exc_info:
        idempotency_service.claim(db, "bcc_email", "key-1")
    assert exc_info.value.result == {"person_id": "p1"}


def test_same_key_on_other_channel_is_independent(db):
    record = idempotency_service.claim(db, "bcc_email", "shared")
    idempotency_service.complete(db, record, {})
    db.commit()

    other = idempotency_service.claim(db, "form_submission", "shared")
    assert other.channel == "form_submission"


def test_rolled_back_claim_leaves_no_entry(db):
    idempotency_service.claim(db, "bcc_email", "key-2")
    db.rollback()

    assert db.query(IdempotencyRecord).count() == 0
    # Redelivery after a failed attempt is processed again
    assert idempotency_service.claim(db, "bcc_email", "key-2") is not None


def test_claim_conflicts_with_uncompleted_row(db):
    record = idempotency_service.claim(db, "bcc_email", "key-3")
    db.commit()
    assert record.status == IdempotencyStatus.PROCESSING.value

    with pytest.raises(ConflictError):
        idempotency_service.claim(db, "bcc_email", "key-3")


def test_claim_lost_race_reports_winner_result(db, monkeypatch):
    record = idempotency_service.claim(db, "form_submission", "key-4")
    idempotency_service.complete(db, record, {"deal_id": "d1"})
    db.commit()

    # Simulate a snapshot read taken before the winner committed
    monkeypatch.setattr(idempotency_service, "lookup", lambda *args, **kwargs: None)

    with pytest.raises(DuplicateEventError) as exc_info:
        idempotency_service.claim(db, "form_submission", "key-4")
    assert exc_info.value.result == {"deal_id": "d1"}
