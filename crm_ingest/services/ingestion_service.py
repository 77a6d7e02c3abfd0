"""
Ingestion gateway - single entry point for inbound events.

Each call validates the payload at the boundary, consults the idempotency
ledger for deduplicated channels, runs person matching / activity recording /
deal evaluation, and commits everything (ledger row included) as one unit.

    received → validated → matched → recorded → deal_evaluated → committed
                  ↘ rejected            (ledger hit) ↘ duplicate
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from email.utils import parseaddr
from typing import Any, Callable
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from crm_ingest.core.security import Capability
from crm_ingest.core.structured_logging import build_log_context
from crm_ingest.db.enums import ApiScope, IngestionChannel, IngestionState
from crm_ingest.db.models import Company, User
from crm_ingest.schemas.ingestion import (
    BCCEmailPayload,
    FormSubmissionPayload,
    IngestionResult,
    TrackingClickPayload,
    TrackingOpenPayload,
)
from crm_ingest.services import (
    activity_service,
    deal_service,
    idempotency_service,
    person_service,
    tracking_service,
)
from crm_ingest.services.errors import (
    ConflictError,
    DuplicateEventError,
    IngestionError,
    PermissionDeniedError,
    ProcessingError,
    UnknownTrackingTokenError,
    UnsupportedChannelError,
    ValidationError,
)
from crm_ingest.services.person_service import PersonHints
from crm_ingest.utils.datetime_parsing import as_utc
from crm_ingest.utils.normalization import is_valid_email, normalize_email, normalize_name

logger = logging.getLogger(__name__)

PAYLOAD_MODELS: dict[IngestionChannel, type[BaseModel]] = {
    IngestionChannel.BCC_EMAIL: BCCEmailPayload,
    IngestionChannel.FORM_SUBMISSION: FormSubmissionPayload,
    IngestionChannel.TRACKING_OPEN: TrackingOpenPayload,
    IngestionChannel.TRACKING_CLICK: TrackingClickPayload,
}


@dataclass
class _Progress:
    """Tracks the state machine position of one event for logging."""
    channel: IngestionChannel
    state: IngestionState = IngestionState.RECEIVED
    history: list[IngestionState] = field(default_factory=lambda: [IngestionState.RECEIVED])

    def advance(self, state: IngestionState) -> None:
        self.state = state
        self.history.append(state)


# =============================================================================
# Entry Point
# =============================================================================


def ingest(
    db: Session,
    channel: IngestionChannel | str,
    payload: BaseModel | dict[str, Any],
    event_key: str | None = None,
    capability: Capability | None = None,
) -> IngestionResult:
    """
    Process one inbound event.

    Args:
        db: Database session (the gateway owns commit/rollback for this unit)
        channel: bcc_email | form_submission | tracking_open | tracking_click
        payload: Raw dict or an already-parsed payload model
        event_key: Caller-supplied idempotency key (derived when omitted;
            ignored for tracking channels)
        capability: Result of API-key validation (required for form_submission)

    Raises:
        UnsupportedChannelError: unknown channel
        ValidationError: malformed payload (field-level detail attached)
        PermissionDeniedError: capability missing the required scope
        ProcessingError: downstream failure; nothing was committed
    """
    resolved_channel = _resolve_channel(channel)
    progress = _Progress(channel=resolved_channel)
    model = _validate_payload(resolved_channel, payload)
    progress.advance(IngestionState.VALIDATED)

    if resolved_channel not in IngestionChannel.deduplicated():
        # Every physical open/click counts; caller keys are ignored
        if resolved_channel == IngestionChannel.TRACKING_OPEN:
            return _ingest_tracking_open(db, model, progress)
        return _ingest_tracking_click(db, model, progress)

    if resolved_channel == IngestionChannel.BCC_EMAIL:
        return _ingest_bcc_email(db, model, event_key, progress)
    return _ingest_form_submission(db, model, event_key, capability, progress)


def _resolve_channel(channel: IngestionChannel | str) -> IngestionChannel:
    if isinstance(channel, IngestionChannel):
        return channel
    if isinstance(channel, str) and IngestionChannel.has_value(channel):
        return IngestionChannel(channel)
    raise UnsupportedChannelError(f"Unsupported channel: {channel!r}")


def _validate_payload(channel: IngestionChannel, payload: BaseModel | dict[str, Any]) -> BaseModel:
    model_cls = PAYLOAD_MODELS[channel]
    if isinstance(payload, model_cls):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=False)
    if not isinstance(payload, dict):
        raise ValidationError.for_field("payload", "Payload must be a JSON object")
    try:
        return model_cls.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "payload",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        raise ValidationError(f"Invalid {channel.value} payload", errors) from exc


# =============================================================================
# Deduplicated Unit of Work
# =============================================================================


def _run_deduplicated(
    db: Session,
    progress: _Progress,
    event_key: str,
    company_id: UUID,
    handler: Callable[[], dict[str, Any]],
) -> IngestionResult:
    """
    Claim the key, run the handler, store the result, commit once.

    A lost claim race rolls back everything this request did and answers with
    the winner's stored result.
    """
    channel = progress.channel
    log_context = build_log_context(
        channel=channel.value, company_id=str(company_id), event_key=event_key
    )
    try:
        record = idempotency_service.claim(db, channel.value, event_key, company_id)
        result = handler()
        idempotency_service.complete(db, record, result)
        db.commit()
    except DuplicateEventError as dup:
        db.rollback()
        progress.advance(IngestionState.DUPLICATE)
        logger.info("Duplicate event short-circuited", extra={**log_context, "state": progress.state.value})
        return IngestionResult(
            channel=channel,
            state=IngestionState.DUPLICATE,
            duplicate=True,
            event_key=event_key,
            result=dup.result,
        )
    except (ValidationError, PermissionDeniedError):
        db.rollback()
        progress.advance(IngestionState.REJECTED)
        raise
    except ConflictError as exc:
        db.rollback()
        logger.warning("Event still in flight elsewhere", extra=log_context)
        raise ProcessingError(str(exc)) from exc
    except ProcessingError:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        logger.exception("Event processing failed", extra={**log_context, "state": progress.state.value})
        raise ProcessingError(f"Failed to process {channel.value} event") from exc

    progress.advance(IngestionState.COMMITTED)
    logger.info("Event committed", extra={**log_context, "state": progress.state.value})
    return IngestionResult(
        channel=channel,
        state=IngestionState.COMMITTED,
        event_key=event_key,
        result=result,
    )


def client_event_key(channel: IngestionChannel, company_id: UUID, raw_key: str) -> str:
    """Scope a caller-supplied Idempotency-Key to its channel and company."""
    return idempotency_service.build_event_key(channel.value, company_id, "client", raw_key.strip())


# =============================================================================
# BCC Email
# =============================================================================


def bcc_event_key(payload: BCCEmailPayload) -> str:
    """Stable key for a BCC delivery: from + to + subject + timestamp + bcc address."""
    recipients = sorted(
        addr for addr in (_address_of(r) for r in payload.to) if addr
    )
    return idempotency_service.build_event_key(
        IngestionChannel.BCC_EMAIL.value,
        _address_of(payload.sender),
        ",".join(recipients),
        payload.subject.strip(),
        as_utc(payload.timestamp).isoformat(),
        normalize_email(payload.bcc_address),
    )


def get_company_for_bcc(db: Session, bcc_address: str) -> Company | None:
    normalized = _address_of(bcc_address)
    if not normalized:
        return None
    return db.query(Company).filter(Company.inbound_bcc_address == normalized).first()


def _ingest_bcc_email(
    db: Session,
    payload: BCCEmailPayload,
    event_key: str | None,
    progress: _Progress,
) -> IngestionResult:
    company = get_company_for_bcc(db, payload.bcc_address)
    if not company:
        progress.advance(IngestionState.REJECTED)
        raise ValidationError.for_field("bcc_address", "Unknown BCC address")
    if not is_valid_email(_address_of(payload.sender)):
        progress.advance(IngestionState.REJECTED)
        raise ValidationError.for_field("from", "A valid sender address is required")

    key = (
        client_event_key(IngestionChannel.BCC_EMAIL, company.id, event_key)
        if event_key
        else bcc_event_key(payload)
    )
    return _run_deduplicated(
        db, progress, key, company.id, lambda: _process_bcc_email(db, company, payload, progress)
    )


def _process_bcc_email(
    db: Session,
    company: Company,
    payload: BCCEmailPayload,
    progress: _Progress,
) -> dict[str, Any]:
    candidates = _external_candidates(db, company, payload)
    if not candidates:
        # Internal-only mail: nothing to attach, but the delivery is settled
        return {"processed": False, "person_id": None, "activity_id": None, "person_created": False}

    # Prefer someone already in the CRM; otherwise create the first external party
    person, created = None, False
    for address, _ in candidates:
        person = person_service.find_by_email(db, company.id, address)
        if person:
            break
    if not person:
        address, display_name = candidates[0]
        first_name, last_name = _split_display_name(display_name)
        person, created = person_service.resolve(
            db,
            company.id,
            address,
            PersonHints(first_name=first_name, last_name=last_name, source=IngestionChannel.BCC_EMAIL.value),
        )
    progress.advance(IngestionState.MATCHED)

    received_at = as_utc(payload.timestamp)
    activity = activity_service.log_email_received(
        db=db,
        person=person,
        sender=payload.sender,
        recipients=list(payload.to),
        subject=payload.subject,
        body=payload.body,
        received_at=received_at,
        bcc_address=payload.bcc_address,
    )
    last_contacted = as_utc(person.last_contacted_at)
    if last_contacted is None or received_at > last_contacted:
        person.last_contacted_at = received_at
        db.flush()
    progress.advance(IngestionState.RECORDED)

    return {
        "processed": True,
        "person_id": str(person.id),
        "activity_id": activity.id,
        "person_created": created,
    }


def _external_candidates(
    db: Session, company: Company, payload: BCCEmailPayload
) -> list[tuple[str, str]]:
    """(address, display name) for every external party, sender first."""
    internal = {
        normalize_email(email)
        for (email,) in db.query(User.email).filter(User.company_id == company.id).all()
    }
    internal.add(_address_of(payload.bcc_address))

    seen: set[str] = set()
    candidates: list[tuple[str, str]] = []
    for raw in [payload.sender, *payload.to]:
        display_name, address = parseaddr(raw)
        address = normalize_email(address)
        if not address or not is_valid_email(address) or address in internal or address in seen:
            continue
        seen.add(address)
        candidates.append((address, display_name))
    return candidates


def _address_of(raw: str | None) -> str | None:
    """'Jane <Jane@Example.com>' -> 'jane@example.com'."""
    if not raw:
        return None
    return normalize_email(parseaddr(raw)[1] or raw)


def _split_display_name(display_name: str | None) -> tuple[str | None, str | None]:
    name = normalize_name(display_name)
    if not name:
        return None, None
    if "," in name:
        # "Doe, Jane"
        last, _, first = name.partition(",")
        first, last = normalize_name(first), normalize_name(last)
        return (first, last) if first else (last, None)
    first, _, last = name.partition(" ")
    return first, last or None


# =============================================================================
# Form Submission
# =============================================================================


def form_event_key(company_id: UUID, payload: FormSubmissionPayload) -> str:
    """Stable key for a form delivery: normalized email + source + client nonce."""
    return idempotency_service.build_event_key(
        IngestionChannel.FORM_SUBMISSION.value,
        company_id,
        normalize_email(payload.email),
        (payload.source or "").strip().lower(),
        payload.nonce or "",
    )


def _ingest_form_submission(
    db: Session,
    payload: FormSubmissionPayload,
    event_key: str | None,
    capability: Capability | None,
    progress: _Progress,
) -> IngestionResult:
    if capability is None or not capability.allows(ApiScope.LEADS_CREATE):
        progress.advance(IngestionState.REJECTED)
        raise PermissionDeniedError(f"API key does not have {ApiScope.LEADS_CREATE.value} permission")
    try:
        person_service.require_email(payload.email)
    except ValidationError:
        progress.advance(IngestionState.REJECTED)
        raise

    key = (
        client_event_key(IngestionChannel.FORM_SUBMISSION, capability.company_id, event_key)
        if event_key
        else form_event_key(capability.company_id, payload)
    )
    return _run_deduplicated(
        db,
        progress,
        key,
        capability.company_id,
        lambda: _process_form_submission(db, capability.company_id, payload, progress),
    )


def _process_form_submission(
    db: Session,
    company_id: UUID,
    payload: FormSubmissionPayload,
    progress: _Progress,
) -> dict[str, Any]:
    person, created = person_service.resolve(
        db,
        company_id,
        payload.email,
        PersonHints(
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
            organization_name=payload.company,
            source=payload.source,
        ),
    )
    progress.advance(IngestionState.MATCHED)

    policy = deal_service.DealPolicy.from_settings()
    attached_deal = (
        deal_service.get_open_deal(db, person.id) if policy.existing_deal == "attach" else None
    )
    activity = activity_service.log_form_submitted(
        db=db,
        person=person,
        source=payload.source,
        fields=payload.model_dump(mode="json", exclude={"nonce"}),
        deal_id=attached_deal.id if attached_deal else None,
    )
    progress.advance(IngestionState.RECORDED)

    is_first_contact = not activity_service.has_prior_activity(db, person.id, before_id=activity.id)
    decision = deal_service.maybe_create_deal(
        db,
        person,
        is_first_contact,
        source=payload.source,
        metadata={"source_activity_id": activity.id, "meta": payload.meta},
        policy=policy,
    )
    progress.advance(IngestionState.DEAL_EVALUATED)

    return {
        "person_id": str(person.id),
        "deal_id": str(decision.deal_id) if decision.deal_id else None,
        "created": created,
        "deal_created": decision.created,
        "activity_id": activity.id,
    }


# =============================================================================
# Tracking (never deduplicated)
# =============================================================================


def _ingest_tracking_open(
    db: Session, payload: TrackingOpenPayload, progress: _Progress
) -> IngestionResult:
    channel = IngestionChannel.TRACKING_OPEN
    try:
        event = tracking_service.record_open(
            db, payload.token, ip_address=payload.ip_address, user_agent=payload.user_agent
        )
        db.commit()
    except UnknownTrackingTokenError as exc:
        db.rollback()
        progress.advance(IngestionState.REJECTED)
        logger.info(f"Open ignored: {exc}", extra=build_log_context(channel=channel.value))
        return IngestionResult(channel=channel, state=IngestionState.REJECTED, result={"recorded": False})
    except IngestionError:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        raise ProcessingError("Failed to record open") from exc

    progress.advance(IngestionState.COMMITTED)
    return IngestionResult(
        channel=channel,
        state=IngestionState.COMMITTED,
        result={"recorded": True, "event_id": event.id},
    )


def _ingest_tracking_click(
    db: Session, payload: TrackingClickPayload, progress: _Progress
) -> IngestionResult:
    channel = IngestionChannel.TRACKING_CLICK
    try:
        event, redirect_url = tracking_service.record_click(
            db,
            payload.token,
            payload.url,
            ip_address=payload.ip_address,
            user_agent=payload.user_agent,
        )
        db.commit()
    except UnknownTrackingTokenError as exc:
        db.rollback()
        progress.advance(IngestionState.REJECTED)
        logger.info(f"Click ignored: {exc}", extra=build_log_context(channel=channel.value))
        return IngestionResult(
            channel=channel,
            state=IngestionState.REJECTED,
            result={
                "recorded": False,
                "redirect_url": tracking_service.safe_redirect_target(payload.url),
            },
        )
    except IngestionError:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        raise ProcessingError("Failed to record click") from exc

    progress.advance(IngestionState.COMMITTED)
    return IngestionResult(
        channel=channel,
        state=IngestionState.COMMITTED,
        result={"recorded": True, "event_id": event.id, "redirect_url": redirect_url},
    )
