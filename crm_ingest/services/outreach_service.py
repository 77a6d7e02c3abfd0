"""Outbound email composition and meeting booking."""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from crm_ingest.db.models import Activity, Person, User
from crm_ingest.schemas.outreach import MeetingCreate, TrackedEmailCreate
from crm_ingest.services import activity_service, person_service, tracking_service
from crm_ingest.services.errors import InvalidPersonError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ComposedEmail:
    activity: Activity
    body: str
    tracking: tracking_service.IssuedTracking | None = None
    tracked_links: dict[str, str] = field(default_factory=dict)


def _get_person(db: Session, company_id: UUID, person_id: UUID) -> Person:
    person = person_service.get_person(db, company_id, person_id)
    if not person:
        raise InvalidPersonError(f"Person {person_id} not found")
    return person


def _get_user(db: Session, company_id: UUID, user_id: UUID, field_name: str) -> User:
    user = (
        db.query(User)
        .filter(User.company_id == company_id, User.id == user_id, User.is_active.is_(True))
        .first()
    )
    if not user:
        raise ValidationError.for_field(field_name, "Unknown or inactive user")
    return user


def append_signature(body: str, signature: str | None) -> str:
    """Place the user's signature before </body>, or at the end."""
    if not signature:
        return body
    block = f"<br><br>{signature}"
    lower = body.lower()
    idx = lower.rfind("</body>")
    if idx == -1:
        return body + block
    return body[:idx] + block + body[idx:]


def compose_tracked_email(
    db: Session,
    company_id: UUID,
    data: TrackedEmailCreate,
) -> ComposedEmail:
    """
    Log an outbound email and prepare its body for tracking.

    The email_sent activity records the body as written; the returned body
    carries the rewritten links and pixel. Caller commits.
    """
    person = _get_person(db, company_id, data.person_id)
    user = _get_user(db, company_id, data.from_user_id, "from_user_id")

    body = append_signature(data.body, user.email_signature)
    activity = activity_service.log_email_sent(
        db=db,
        person=person,
        user_id=user.id,
        subject=data.subject,
        body=body,
        track_opens=data.track_opens,
        track_clicks=data.track_clicks,
    )

    if not (data.track_opens or data.track_clicks):
        return ComposedEmail(activity=activity, body=body)

    links = tracking_service.extract_links(body) if data.track_clicks else []
    tracking = tracking_service.issue_token(db, activity.id, links)
    prepared = tracking_service.prepare_email_for_tracking(
        body,
        tracking.token,
        track_opens=data.track_opens,
        track_clicks=data.track_clicks,
    )
    logger.info(f"Issued tracking token for activity {activity.id} with {len(links)} links")
    return ComposedEmail(
        activity=activity,
        body=prepared,
        tracking=tracking,
        tracked_links=tracking.link_urls,
    )


def book_meeting(db: Session, company_id: UUID, data: MeetingCreate) -> Activity:
    """Log a meeting with a person. Caller commits."""
    person = _get_person(db, company_id, data.person_id)
    user = _get_user(db, company_id, data.user_id, "user_id")
    return activity_service.log_meeting_booked(
        db=db,
        person=person,
        user_id=user.id,
        title=data.title,
        start_time=data.start_time,
        end_time=data.end_time,
        description=data.description,
    )
