"""Person matching - resolve an email address to a contact, creating it once."""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_ingest.core.structured_logging import mask_email
from crm_ingest.db.models import Person
from crm_ingest.services.errors import ConflictError, ProcessingError, ValidationError
from crm_ingest.utils.normalization import (
    is_valid_email,
    names_from_email,
    normalize_email,
    normalize_name,
)

logger = logging.getLogger(__name__)

# Fields a later sighting may fill in when they are still blank
_FILLABLE_FIELDS = ("first_name", "last_name", "phone", "organization_name")


@dataclass
class PersonHints:
    """Optional attributes used when a person is created."""
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    organization_name: str | None = None
    source: str | None = None
    owner_user_id: UUID | None = None


def require_email(email: str | None, field: str = "email") -> str:
    """Normalize and validate an address, raising a field-level ValidationError."""
    normalized = normalize_email(email)
    if not normalized or not is_valid_email(normalized):
        raise ValidationError.for_field(field, "A valid email address is required")
    return normalized


def get_person(db: Session, company_id: UUID, person_id: UUID) -> Person | None:
    return (
        db.query(Person)
        .filter(Person.company_id == company_id, Person.id == person_id)
        .first()
    )


def find_by_email(db: Session, company_id: UUID, email: str) -> Person | None:
    """Exact match on the normalized address within a company."""
    normalized = normalize_email(email)
    if not normalized:
        return None
    return (
        db.query(Person)
        .filter(Person.company_id == company_id, Person.email == normalized)
        .first()
    )


def resolve(
    db: Session,
    company_id: UUID,
    email: str,
    hints: PersonHints | None = None,
) -> tuple[Person, bool]:
    """
    Resolve an address to a Person, creating one on first sighting.

    The (company_id, email) unique constraint is the only source of truth
    for creation. When a concurrent request wins the insert, the savepoint is
    rolled back and the lookup retried once; the winner's row is returned
    with was_created=False.

    Returns:
        (person, was_created)
    """
    normalized = require_email(email)
    hints = hints or PersonHints()

    person = find_by_email(db, company_id, normalized)
    if person:
        _fill_blanks(person, hints)
        return person, False

    try:
        person = _create(db, company_id, normalized, hints)
        logger.info(f"Created person {person.id} for {mask_email(normalized)}")
        return person, True
    except ConflictError:
        winner = find_by_email(db, company_id, normalized)
        if not winner:
            raise ProcessingError("Person creation conflicted but no winning row was found")
        logger.info(f"Person create race resolved to existing {winner.id}")
        return winner, False


def _create(db: Session, company_id: UUID, email: str, hints: PersonHints) -> Person:
    default_first, default_last = names_from_email(email)
    first_name = normalize_name(hints.first_name)
    last_name = normalize_name(hints.last_name)
    if not first_name:
        first_name = default_first
        last_name = last_name or default_last

    person = Person(
        company_id=company_id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone=(hints.phone or "").strip() or None,
        organization_name=normalize_name(hints.organization_name),
        source=hints.source,
        owner_user_id=hints.owner_user_id,
    )
    try:
        with db.begin_nested():
            db.add(person)
            db.flush()
    except IntegrityError as exc:
        raise ConflictError("Person already exists for this address") from exc
    return person


def _fill_blanks(person: Person, hints: PersonHints) -> None:
    """Copy hint values onto blank fields; never overwrite existing data."""
    values = {
        "first_name": normalize_name(hints.first_name),
        "last_name": normalize_name(hints.last_name),
        "phone": (hints.phone or "").strip() or None,
        "organization_name": normalize_name(hints.organization_name),
    }
    for field in _FILLABLE_FIELDS:
        if values[field] and not getattr(person, field):
            setattr(person, field, values[field])
