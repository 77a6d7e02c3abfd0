"""Deal auto-creation for new form leads."""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_ingest.core.config import settings
from crm_ingest.db.enums import DealStatus
from crm_ingest.db.models import Deal, DealStage, Person

logger = logging.getLogger(__name__)

DEFAULT_DEAL_SOURCE = "Form Submission"


@dataclass
class DealPolicy:
    """
    Deal-creation policy.

    existing_deal: what to report when the person already has an open deal.
        'ignore' reports nothing, 'attach' reports (and links to) that deal.
    """
    auto_create: bool = True
    existing_deal: str = "ignore"

    @classmethod
    def from_settings(cls) -> "DealPolicy":
        return cls(
            auto_create=settings.AUTO_CREATE_DEALS,
            existing_deal=settings.EXISTING_DEAL_POLICY,
        )


@dataclass
class DealDecision:
    deal: Deal | None
    created: bool

    @property
    def deal_id(self) -> UUID | None:
        return self.deal.id if self.deal else None


def get_open_deal(db: Session, person_id: UUID) -> Deal | None:
    return (
        db.query(Deal)
        .filter(Deal.person_id == person_id, Deal.status == DealStatus.OPEN.value)
        .first()
    )


def get_entry_stage(db: Session, company_id: UUID) -> DealStage | None:
    """First stage of the company's pipeline (lowest position)."""
    return (
        db.query(DealStage)
        .filter(DealStage.company_id == company_id)
        .order_by(DealStage.position.asc(), DealStage.name.asc())
        .first()
    )


def build_deal_title(person: Person, source: str | None) -> str:
    name = person.display_name or person.email
    return f"{name} - {source or DEFAULT_DEAL_SOURCE}".strip()


def maybe_create_deal(
    db: Session,
    person: Person,
    is_first_contact: bool,
    source: str | None = None,
    metadata: dict | None = None,
    policy: DealPolicy | None = None,
) -> DealDecision:
    """
    Open a deal for a person when the submission is their first contact.

    The "no prior activity" check only short-circuits the common case. The
    partial unique index (one open deal per person) decides races: the
    insert runs in a savepoint and a violation means another request already
    opened the deal.
    """
    policy = policy or DealPolicy.from_settings()

    existing = get_open_deal(db, person.id)
    if existing:
        if policy.existing_deal == "attach":
            return DealDecision(deal=existing, created=False)
        return DealDecision(deal=None, created=False)

    if not policy.auto_create or not is_first_contact:
        return DealDecision(deal=None, created=False)

    stage = get_entry_stage(db, person.company_id)
    if not stage:
        logger.warning(f"No deal stages configured for company {person.company_id}; skipping deal")
        return DealDecision(deal=None, created=False)

    deal = Deal(
        company_id=person.company_id,
        person_id=person.id,
        stage_id=stage.id,
        title=build_deal_title(person, source),
        status=DealStatus.OPEN.value,
        notes=metadata or {},
    )
    try:
        with db.begin_nested():
            db.add(deal)
            db.flush()
    except IntegrityError:
        logger.info(f"Open deal already exists for person {person.id}; not creating another")
        winner = get_open_deal(db, person.id)
        if winner and policy.existing_deal == "attach":
            return DealDecision(deal=winner, created=False)
        return DealDecision(deal=None, created=False)

    logger.info(f"Opened deal {deal.id} for person {person.id} in stage {stage.name}")
    return DealDecision(deal=deal, created=True)
