"""Tests for outbound composition, meetings and person timelines."""

import uuid

import pytest

from crm_ingest.db.enums import ActivityType, IngestionChannel
from crm_ingest.db.models import Activity, TrackingToken
from crm_ingest.schemas.outreach import TrackedEmailCreate
from crm_ingest.services import ingestion_service, outreach_service, person_service, tracking_service
from crm_ingest.services.errors import InvalidPersonError, ValidationError

BODY = (
    "<html><body><p>Hi!</p>"
    '<a href="https://a.test/one">1</a>'
    '<a href="https://a.test/two">2</a>'
    '<a href="https://a.test/three">3</a>'
    '<a href="mailto:rep@acme.test">mail me</a>'
    "</body></html>"
)


def _person_id(db, tenant, email="lead@example.com"):
    person, _ = person_service.resolve(db, tenant.company_id, email)
    person_id = person.id
    db.commit()
    return person_id


# =============================================================================
# Service
# =============================================================================


def test_compose_tracked_email_rewrites_every_link(db, tenant):
    person_id = _person_id(db, tenant)
    data = TrackedEmailCreate(
        person_id=person_id, from_user_id=tenant.user_id, subject="Hello", body=BODY
    )

    composed = outreach_service.compose_tracked_email(db, tenant.company_id, data)
    db.commit()

    assert set(composed.tracked_links) == {
        "https://a.test/one",
        "https://a.test/two",
        "https://a.test/three",
    }
    assert composed.body.count("/tracking/click/") == 3
    assert 'href="mailto:rep@acme.test"' in composed.body
    assert composed.body.index("/tracking/open/") < composed.body.index("</body>")
    # Signature is appended before tracking, so it is part of the logged body
    assert "-- Sales Rep" in composed.activity.details["body"]

    tokens = {
        tracking_service.parse_tracking_url(url)[1] for url in composed.tracked_links.values()
    }
    assert tokens == {composed.tracking.token}
    assert composed.activity.activity_type == ActivityType.EMAIL_SENT.value


def test_compose_without_tracking_issues_no_token(db, tenant):
    person_id = _person_id(db, tenant)
    data = TrackedEmailCreate(
        person_id=person_id,
        from_user_id=tenant.user_id,
        subject="Plain",
        body=BODY,
        track_opens=False,
        track_clicks=False,
    )

    composed = outreach_service.compose_tracked_email(db, tenant.company_id, data)

    assert composed.tracking is None
    assert "/tracking/" not in composed.body
    assert db.query(TrackingToken).count() == 0


def test_compose_for_unknown_person(db, tenant):
    data = TrackedEmailCreate(
        person_id=uuid.uuid4(), from_user_id=tenant.user_id, subject="Hello", body=BODY
    )

    with pytest.raises(InvalidPersonError):
        outreach_service.compose_tracked_email(db, tenant.company_id, data)


def test_compose_from_unknown_user(db, tenant):
    person_id = _person_id(db, tenant)
    data = TrackedEmailCreate(
        person_id=person_id, from_user_id=uuid.uuid4(), subject="Hello", body=BODY
    )

    with pytest.raises(ValidationError) as exc_info:
        outreach_service.compose_tracked_email(db, tenant.company_id, data)
    assert exc_info.value.errors[0]["field"] == "from_user_id"


def test_append_signature():
    assert outreach_service.append_signature("<p>x</p>", None) == "<p>x</p>"
    assert outreach_service.append_signature("<p>x</p>", "sig").endswith("sig")
    assert outreach_service.append_signature("<body>x</BODY>", "sig") == "<body>x<br><br>sig</BODY>"


# =============================================================================
# Endpoints
# =============================================================================


@pytest.mark.asyncio
async def test_tracked_email_endpoint_and_engagement(api_client, client, db, tenant):
    person_id = _person_id(db, tenant)

    response = await api_client.post(
        "/outreach/emails/tracked",
        json={
            "person_id": str(person_id),
            "from_user_id": str(tenant.user_id),
            "subject": "Hello",
            "body": BODY,
        },
    )

    assert response.status_code == 201
    data = response.json()
    assert len(data["tracked_links"]) == 3
    token = data["tracking_token"]
    assert data["pixel_url"].endswith(f"/tracking/open/{token}")

    for _ in range(2):
        await client.get(f"/tracking/open/{token}")
    await client.get(f"/tracking/click/{token}", params={"url": "https://a.test/two"})

    summary = await api_client.get(f"/tracking/tokens/{token}/summary")
    assert summary.json()["open_count"] == 2
    assert summary.json()["click_count"] == 1
    assert summary.json()["activity_id"] == data["activity_id"]


@pytest.mark.asyncio
async def test_tracked_email_endpoint_unknown_person(api_client, tenant):
    response = await api_client.post(
        "/outreach/emails/tracked",
        json={
            "person_id": str(uuid.uuid4()),
            "from_user_id": str(tenant.user_id),
            "subject": "Hello",
            "body": BODY,
        },
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_tracked_email_endpoint_requires_scope(client, db, tenant):
    person_id = _person_id(db, tenant)

    response = await client.post(
        "/outreach/emails/tracked",
        json={
            "person_id": str(person_id),
            "from_user_id": str(tenant.user_id),
            "subject": "Hello",
            "body": BODY,
        },
        headers={"Authorization": f"Bearer {tenant.read_only_key}"},
    )

    assert response.status_code == 403
    assert db.query(Activity).count() == 0


@pytest.mark.asyncio
async def test_book_meeting(api_client, db, tenant):
    person_id = _person_id(db, tenant)

    response = await api_client.post(
        "/outreach/meetings",
        json={
            "person_id": str(person_id),
            "user_id": str(tenant.user_id),
            "title": "Discovery call",
            "start_time": "2026-10-20T15:00:00Z",
            "end_time": "2026-10-20T15:30:00Z",
        },
    )

    assert response.status_code == 201
    data = response.json()
    assert data["activity_type"] == ActivityType.MEETING_BOOKED.value
    assert data["title"] == "Discovery call"
    assert data["details"]["start_time"].startswith("2026-10-20T15:00:00")


@pytest.mark.asyncio
async def test_book_meeting_rejects_inverted_window(api_client, db, tenant):
    person_id = _person_id(db, tenant)

    response = await api_client.post(
        "/outreach/meetings",
        json={
            "person_id": str(person_id),
            "user_id": str(tenant.user_id),
            "title": "Backwards",
            "start_time": "2026-10-20T15:30:00Z",
            "end_time": "2026-10-20T15:00:00Z",
        },
    )

    assert response.status_code == 422


# =============================================================================
# Timeline
# =============================================================================


@pytest.mark.asyncio
async def test_timeline_lists_activities_in_order(api_client, db, tenant):
    capability = tenant.capability
    ingestion_service.ingest(
        db,
        IngestionChannel.FORM_SUBMISSION,
        {"email": "lead@example.com", "nonce": "1"},
        capability=capability,
    )
    ingestion_service.ingest(
        db,
        IngestionChannel.BCC_EMAIL,
        {
            "from": tenant.user_email,
            "to": ["lead@example.com"],
            "subject": "Follow-up",
            "timestamp": "2026-10-19T10:00:00Z",
            "bcc_address": tenant.bcc_address,
        },
    )
    person_id = _person_id(db, tenant)

    response = await api_client.get(f"/people/{person_id}/timeline")

    assert response.status_code == 200
    types = [a["activity_type"] for a in response.json()]
    assert types == [ActivityType.FORM_SUBMITTED.value, ActivityType.EMAIL_RECEIVED.value]

    first_id = response.json()[0]["id"]
    page = await api_client.get(f"/people/{person_id}/timeline", params={"after_id": first_id})
    assert [a["activity_type"] for a in page.json()] == [ActivityType.EMAIL_RECEIVED.value]


@pytest.mark.asyncio
async def test_timeline_is_company_scoped(api_client, db, tenant, make_tenant):
    other = make_tenant()
    stranger_id = _person_id(db, other, email="stranger@example.com")

    response = await api_client.get(f"/people/{stranger_id}/timeline")

    assert response.status_code == 404
