"""Activity logging service - append-only person timeline."""

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from crm_ingest.db.enums import ActivityType
from crm_ingest.db.models import Activity, Person
from crm_ingest.services.errors import InvalidPersonError
from crm_ingest.utils.datetime_parsing import utcnow

DEFAULT_TITLES = {
    ActivityType.EMAIL_RECEIVED: "Email Received",
    ActivityType.EMAIL_SENT: "Email Sent",
    ActivityType.MEETING_BOOKED: "Meeting Booked",
    ActivityType.FORM_SUBMITTED: "Form Submission",
}


def record(
    db: Session,
    person: Person | None,
    activity_type: ActivityType,
    payload: dict | None = None,
    user_id: UUID | None = None,
    deal_id: UUID | None = None,
    title: str | None = None,
    summary: str | None = None,
    occurred_at: datetime | None = None,
) -> Activity:
    """
    Append a timeline entry for a person.

    Args:
        db: Database session
        person: The person this activity is for (must be persisted)
        activity_type: Type of activity (from ActivityType enum)
        payload: Type-specific details as JSON
        user_id: User who performed the action (None for inbound events)
        deal_id: Deal the activity belongs to, if any
        title: Display title (defaults per type)
        summary: Short human-readable description
        occurred_at: When the underlying event happened (defaults to now)

    Returns:
        The created activity

    Raises:
        InvalidPersonError: person is missing or not persisted
    """
    if person is None or person.id is None or person.company_id is None:
        raise InvalidPersonError("Activity requires a persisted person")
    if db.get(Person, person.id) is None:
        raise InvalidPersonError(f"Person {person.id} does not exist")

    activity = Activity(
        company_id=person.company_id,
        person_id=person.id,
        user_id=user_id,
        deal_id=deal_id,
        activity_type=activity_type.value,
        title=title or DEFAULT_TITLES[activity_type],
        summary=summary,
        details=payload or {},
        occurred_at=occurred_at or utcnow(),
    )
    db.add(activity)
    db.flush()  # Don't commit - let caller control transaction
    return activity


def has_prior_activity(db: Session, person_id: UUID, before_id: int | None = None) -> bool:
    """True if any activity exists for the person (optionally older than before_id)."""
    query = db.query(Activity.id).filter(Activity.person_id == person_id)
    if before_id is not None:
        query = query.filter(Activity.id < before_id)
    return query.first() is not None


def list_timeline(
    db: Session,
    company_id: UUID,
    person_id: UUID,
    limit: int = 100,
    after_id: int | None = None,
) -> list[Activity]:
    """Activities for a person in insertion order."""
    query = db.query(Activity).filter(
        Activity.company_id == company_id,
        Activity.person_id == person_id,
    )
    if after_id is not None:
        query = query.filter(Activity.id > after_id)
    return query.order_by(Activity.id.asc()).limit(limit).all()


def log_email_received(
    db: Session,
    person: Person,
    sender: str,
    recipients: list[str],
    subject: str,
    body: str,
    received_at: datetime,
    bcc_address: str,
) -> Activity:
    """Log an inbound email captured by the BCC address."""
    return record(
        db=db,
        person=person,
        activity_type=ActivityType.EMAIL_RECEIVED,
        summary="Email received via BCC",
        occurred_at=received_at,
        payload={
            "from": sender,
            "to": recipients,
            "subject": subject,
            "body_preview": body[:500],
            "bcc_address": bcc_address,
        },
    )


def log_email_sent(
    db: Session,
    person: Person,
    user_id: UUID,
    subject: str,
    body: str,
    track_opens: bool,
    track_clicks: bool,
) -> Activity:
    """Log an outbound email composed by a user."""
    return record(
        db=db,
        person=person,
        activity_type=ActivityType.EMAIL_SENT,
        user_id=user_id,
        summary=subject,
        payload={
            "subject": subject,
            "body": body,
            "track_opens": track_opens,
            "track_clicks": track_clicks,
        },
    )


def log_meeting_booked(
    db: Session,
    person: Person,
    user_id: UUID,
    title: str,
    start_time: datetime,
    end_time: datetime,
    description: str | None = None,
) -> Activity:
    """Log a meeting booked with a person."""
    return record(
        db=db,
        person=person,
        activity_type=ActivityType.MEETING_BOOKED,
        user_id=user_id,
        title=title,
        summary=description,
        payload={
            "start_time": start_time.isoformat(),
            "end_time": end_time.isoformat(),
        },
    )


def log_form_submitted(
    db: Session,
    person: Person,
    source: str | None,
    fields: dict,
    deal_id: UUID | None = None,
) -> Activity:
    """Log a marketing form submission."""
    return record(
        db=db,
        person=person,
        activity_type=ActivityType.FORM_SUBMITTED,
        deal_id=deal_id,
        summary="Lead captured from form submission",
        payload={"source": source, "fields": fields},
    )
