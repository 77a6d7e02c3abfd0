"""HTTP tests for the inbound webhook endpoints."""

import json

import pytest

from crm_ingest.core.config import settings
from crm_ingest.db.models import Activity, Deal, Person


def _bcc_body(tenant, **overrides):
    body = {
        "from": tenant.user_email,
        "to": "prospect@client.test, " + tenant.other_user_email,
        "subject": "Proposal",
        "body": "Attached.",
        "timestamp": "2026-10-19T15:30:00Z",
        "bccAddress": tenant.bcc_address.upper(),
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_bcc_email_webhook(client, db, tenant):
    response = await client.post("/webhooks/bcc-email", json=_bcc_body(tenant))

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] is True
    assert data["person_created"] is True
    assert data["duplicate"] is False
    assert db.query(Person).one().email == "prospect@client.test"


@pytest.mark.asyncio
async def test_bcc_email_webhook_redelivery(client, db, tenant):
    first = await client.post("/webhooks/bcc-email", json=_bcc_body(tenant))
    second = await client.post("/webhooks/bcc-email", json=_bcc_body(tenant))

    assert second.status_code == 200
    assert second.json()["duplicate"] is True
    assert second.json()["activity_id"] == first.json()["activity_id"]
    assert db.query(Activity).count() == 1


@pytest.mark.asyncio
async def test_bcc_email_webhook_idempotency_header(client, db, tenant):
    headers = {"Idempotency-Key": "msg-123"}
    await client.post("/webhooks/bcc-email", json=_bcc_body(tenant), headers=headers)
    again = await client.post(
        "/webhooks/bcc-email", json=_bcc_body(tenant, subject="Edited"), headers=headers
    )

    assert again.json()["duplicate"] is True
    assert db.query(Activity).count() == 1


@pytest.mark.asyncio
async def test_bcc_email_webhook_validation_error(client, tenant):
    response = await client.post(
        "/webhooks/bcc-email", json=_bcc_body(tenant, timestamp="not-a-date")
    )

    assert response.status_code == 422
    assert response.json()["errors"][0]["field"] == "timestamp"


@pytest.mark.asyncio
async def test_bcc_email_webhook_invalid_json(client, tenant):
    response = await client.post(
        "/webhooks/bcc-email",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 422
    assert response.json()["errors"][0]["field"] == "payload"


@pytest.mark.asyncio
async def test_bcc_email_webhook_rejects_oversized_payload(client, db, tenant, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_MAX_PAYLOAD_BYTES", 64)

    response = await client.post("/webhooks/bcc-email", json=_bcc_body(tenant))

    assert response.status_code == 413
    assert db.query(Activity).count() == 0


@pytest.mark.asyncio
async def test_bcc_email_webhook_rejects_oversized_chunked_payload(client, db, tenant, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_MAX_PAYLOAD_BYTES", 64)
    raw = json.dumps(_bcc_body(tenant)).encode()

    async def chunks():
        for start in range(0, len(raw), 16):
            yield raw[start:start + 16]

    response = await client.post(
        "/webhooks/bcc-email",
        content=chunks(),
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 413
    assert db.query(Activity).count() == 0


@pytest.mark.asyncio
async def test_bcc_email_webhook_unknown_address(client, tenant):
    response = await client.post(
        "/webhooks/bcc-email", json=_bcc_body(tenant, bccAddress="stranger@inbound.crm.test")
    )

    assert response.status_code == 422
    assert response.json()["errors"][0]["field"] == "bcc_address"


@pytest.mark.asyncio
async def test_form_submission_webhook(api_client, db, tenant):
    response = await api_client.post(
        "/webhooks/form-submission",
        json={"email": "a@b.com", "firstName": "A", "source": "Contact Us"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["created"] is True
    assert data["deal_created"] is True
    assert data["deal_id"] == str(db.query(Deal).one().id)


@pytest.mark.asyncio
async def test_form_submission_webhook_second_visit(api_client, db, tenant):
    first = await api_client.post(
        "/webhooks/form-submission", json={"email": "a@b.com", "firstName": "A", "nonce": "1"}
    )
    second = await api_client.post(
        "/webhooks/form-submission", json={"email": "a@b.com", "firstName": "A", "nonce": "2"}
    )

    assert second.status_code == 200
    assert second.json()["created"] is False
    assert second.json()["person_id"] == first.json()["person_id"]
    assert second.json()["deal_id"] is None
    assert db.query(Deal).count() == 1


@pytest.mark.asyncio
async def test_form_submission_webhook_identical_replay(api_client, db, tenant):
    body = {"email": "a@b.com", "firstName": "A"}
    first = await api_client.post("/webhooks/form-submission", json=body)
    replay = await api_client.post("/webhooks/form-submission", json=body)

    assert replay.status_code == 200
    assert replay.json()["duplicate"] is True
    assert replay.json()["created"] is True
    assert replay.json()["deal_id"] == first.json()["deal_id"]
    assert db.query(Deal).count() == 1


@pytest.mark.asyncio
async def test_form_submission_webhook_requires_api_key(client, db, tenant):
    response = await client.post("/webhooks/form-submission", json={"email": "a@b.com"})

    assert response.status_code == 401
    assert db.query(Person).count() == 0


@pytest.mark.asyncio
async def test_form_submission_webhook_rejects_unknown_key(client, tenant):
    response = await client.post(
        "/webhooks/form-submission",
        json={"email": "a@b.com"},
        headers={"Authorization": "Bearer crm_not-a-real-key"},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_form_submission_webhook_requires_leads_scope(client, db, tenant):
    response = await client.post(
        "/webhooks/form-submission",
        json={"email": "a@b.com"},
        headers={"X-API-Key": tenant.read_only_key},
    )

    assert response.status_code == 403
    assert db.query(Person).count() == 0


@pytest.mark.asyncio
async def test_form_submission_webhook_invalid_email(api_client, db, tenant):
    response = await api_client.post("/webhooks/form-submission", json={"email": "nope"})

    assert response.status_code == 422
    assert response.json()["errors"] == [
        {"field": "email", "message": "A valid email address is required"}
    ]


@pytest.mark.asyncio
async def test_form_submission_webhook_processing_error_is_retryable(
    api_client, db, tenant, monkeypatch
):
    from crm_ingest.services import deal_service

    def broken(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(deal_service, "maybe_create_deal", broken)

    response = await api_client.post("/webhooks/form-submission", json={"email": "a@b.com"})

    assert response.status_code == 503
    assert response.json()["retryable"] is True
    assert db.query(Person).count() == 0


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
