"""Enum definitions for application constants."""

from enum import Enum


class IngestionChannel(str, Enum):
    """Inbound event channels accepted by the ingestion gateway."""
    BCC_EMAIL = "bcc_email"
    FORM_SUBMISSION = "form_submission"
    TRACKING_OPEN = "tracking_open"
    TRACKING_CLICK = "tracking_click"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid channel."""
        return value in cls._value2member_map_

    @classmethod
    def deduplicated(cls) -> set["IngestionChannel"]:
        """Channels gated by the idempotency ledger.

        Tracking channels are excluded: every physical open/click is counted.
        """
        return {cls.BCC_EMAIL, cls.FORM_SUBMISSION}


class IngestionState(str, Enum):
    """
    Lifecycle of one inbound event.

        received → validated → matched → recorded → deal_evaluated → committed

    Terminal alternatives: rejected (validation/permission failure) and
    duplicate (ledger already holds the key).
    """
    RECEIVED = "received"
    VALIDATED = "validated"
    MATCHED = "matched"
    RECORDED = "recorded"
    DEAL_EVALUATED = "deal_evaluated"
    COMMITTED = "committed"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"


class ActivityType(str, Enum):
    """Timeline entry types."""
    EMAIL_RECEIVED = "email_received"
    EMAIL_SENT = "email_sent"
    MEETING_BOOKED = "meeting_booked"
    FORM_SUBMITTED = "form_submitted"


class DealStatus(str, Enum):
    OPEN = "open"
    WON = "won"
    LOST = "lost"


class EngagementType(str, Enum):
    OPEN = "open"
    CLICK = "click"


class IdempotencyStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"


class ApiScope(str, Enum):
    """Scopes granted to API keys by the key-validation service."""
    LEADS_CREATE = "leads:create"
    OUTREACH_WRITE = "outreach:write"
    PEOPLE_READ = "people:read"


DEFAULT_DEAL_STATUS = DealStatus.OPEN.value
