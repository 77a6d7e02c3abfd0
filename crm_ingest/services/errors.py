"""Error taxonomy for the ingestion core.

Every failure is scoped to the single event being processed.
"""

from typing import Any


class IngestionError(Exception):
    """Base exception for ingestion errors."""

    pass


class ValidationError(IngestionError):
    """Malformed or missing fields. Rejected with no side effects."""

    def __init__(self, message: str, errors: list[dict[str, str]] | None = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, [{"field": field, "message": message}])


class UnknownActivityError(ValidationError):
    """Tracking was requested for an activity that does not exist."""

    pass


class UnsupportedChannelError(IngestionError):
    """Event channel is not one the gateway accepts."""

    pass


class PermissionDeniedError(IngestionError):
    """Capability check result does not grant the required scope."""

    pass


class DuplicateEventError(IngestionError):
    """
    Informational: the event key was already processed.

    Carries the stored result so callers can answer the retry unchanged.
    """

    def __init__(self, channel: str, event_key: str, result: dict[str, Any]):
        super().__init__(f"Event already processed for channel={channel}")
        self.channel = channel
        self.event_key = event_key
        self.result = result


class ConflictError(IngestionError):
    """Storage-layer uniqueness race; resolved by re-reading the winning row."""

    pass


class ProcessingError(IngestionError):
    """Downstream failure after validation. Safe to redeliver."""

    retryable = True


class InvalidPersonError(IngestionError):
    """Person reference is missing, unsaved, or not visible to the caller's company."""

    pass


class UnknownTrackingTokenError(IngestionError):
    """Tracking token is unknown or expired. Never surfaced to mail clients."""

    pass
