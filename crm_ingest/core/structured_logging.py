"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any

from crm_ingest.core.config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once at application startup."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def mask_email(email: str | None) -> str | None:
    """Mask an email address for logs: jane.doe@example.com -> j***@example.com."""
    if not email:
        return email
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def build_log_context(
    *,
    channel: str | None = None,
    company_id: str | None = None,
    event_key: str | None = None,
    state: str | None = None,
    person_id: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if channel:
        context["channel"] = channel
    if company_id:
        context["company_id"] = company_id
    if event_key:
        # Keys are hashes; a prefix is enough to correlate retries
        context["event_key"] = event_key[:12]
    if state:
        context["state"] = state
    if person_id:
        context["person_id"] = person_id
    return context
