"""
Email Tracking Service.

Issues tracking tokens for outbound email, rewrites links through the click
endpoint, injects the open pixel, and records open/click engagement events.
"""

import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional
from urllib.parse import parse_qs, quote, urlsplit
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from crm_ingest.core.config import settings
from crm_ingest.db.enums import EngagementType
from crm_ingest.db.models import Activity, EngagementEvent, TrackingToken
from crm_ingest.services.errors import UnknownActivityError, UnknownTrackingTokenError
from crm_ingest.utils.datetime_parsing import as_utc, utcnow


logger = logging.getLogger(__name__)

OPEN_PATH = "/tracking/open/"
CLICK_PATH = "/tracking/click/"

# Match <a href="..." or <a href='...'
_LINK_PATTERN = re.compile(r'(<a\s+[^>]*href\s*=\s*)["\']([^"\']+)["\']', re.IGNORECASE)
_BODY_CLOSE_PATTERN = re.compile(r"(</body>)", re.IGNORECASE)


# =============================================================================
# Token Generation
# =============================================================================


def generate_tracking_token() -> str:
    """Generate an unguessable tracking token (32 random bytes, url-safe)."""
    return secrets.token_urlsafe(32)


# =============================================================================
# URL Generation
# =============================================================================


def get_tracking_base_url() -> str:
    """Get the base URL for tracking endpoints."""
    return (settings.API_BASE_URL or "http://localhost:8000").rstrip("/")


def get_tracking_pixel_url(token: str) -> str:
    """Get the URL for the tracking pixel (open tracking)."""
    base = get_tracking_base_url()
    return f"{base}{OPEN_PATH}{token}"


def get_tracked_link_url(token: str, original_url: str) -> str:
    """Get the tracking URL for a link (click tracking)."""
    base = get_tracking_base_url()
    encoded_url = quote(original_url, safe="")
    return f"{base}{CLICK_PATH}{token}?url={encoded_url}"


def parse_tracking_url(url: str) -> tuple[str, str, Optional[str]] | None:
    """
    Resolve a rewritten URL back to (kind, token, original_url).

    kind is 'open' or 'click'; original_url is None for the pixel.
    Returns None for URLs that are not tracking URLs.
    """
    parts = urlsplit(url)
    path = parts.path
    if OPEN_PATH in path:
        token = path.split(OPEN_PATH, 1)[1].strip("/")
        return (EngagementType.OPEN.value, token, None) if token else None
    if CLICK_PATH in path:
        token = path.split(CLICK_PATH, 1)[1].strip("/")
        original = parse_qs(parts.query).get("url", [None])[0]
        return (EngagementType.CLICK.value, token, original) if token else None
    return None


def is_trackable_link(url: str) -> bool:
    """Only absolute http(s) links are rewritten; tracking links are never double-wrapped."""
    candidate = (url or "").strip()
    if CLICK_PATH in candidate:
        return False
    return candidate.lower().startswith(("http://", "https://"))


def safe_redirect_target(url: Optional[str]) -> str:
    """
    Destination for the click redirect.

    Anything other than an absolute http(s) URL (javascript:, data:, relative
    paths, empty) degrades to the configured fallback.
    """
    if url:
        candidate = url.strip()
        parts = urlsplit(candidate)
        if parts.scheme.lower() in ("http", "https") and parts.netloc:
            return candidate
    return settings.TRACKING_FALLBACK_URL


# =============================================================================
# Email Content Transformation
# =============================================================================


def extract_links(html_body: str) -> list[str]:
    """Trackable links in the body, de-duplicated in first-seen order."""
    links: list[str] = []
    for match in _LINK_PATTERN.finditer(html_body or ""):
        url = match.group(2)
        if is_trackable_link(url) and url not in links:
            links.append(url)
    return links


def inject_tracking_pixel(html_body: str, token: str) -> str:
    """
    Inject a 1x1 tracking pixel into the email body.

    Adds the pixel just before the closing </body> tag,
    or at the end if no </body> tag exists.
    """
    pixel_url = get_tracking_pixel_url(token)
    pixel_html = f'<img src="{pixel_url}" width="1" height="1" style="display:block;width:1px;height:1px;border:0;" alt="" />'

    if _BODY_CLOSE_PATTERN.search(html_body):
        return _BODY_CLOSE_PATTERN.sub(f"{pixel_html}\\1", html_body, count=1)

    # No </body> tag, append to end
    return html_body + pixel_html


def wrap_links_in_email(html_body: str, token: str) -> str:
    """
    Replace all trackable links in the email with tracking links.

    mailto:, tel:, anchors, template variables, javascript: and relative
    links are left alone.
    """

    def replace_link(match):
        original_url = match.group(2)
        if not is_trackable_link(original_url):
            return match.group(0)
        tracked_url = get_tracked_link_url(token, original_url)
        return f'{match.group(1)}"{tracked_url}"'

    return _LINK_PATTERN.sub(replace_link, html_body)


def prepare_email_for_tracking(
    html_body: str,
    token: str,
    track_opens: bool = True,
    track_clicks: bool = True,
) -> str:
    """
    Prepare an email body for tracking.

    Wraps links first, then injects the pixel (so the pixel is never wrapped).
    """
    body = html_body
    if track_clicks:
        body = wrap_links_in_email(body, token)
    if track_opens:
        body = inject_tracking_pixel(body, token)
    return body


# =============================================================================
# Token Issuance
# =============================================================================


@dataclass
class IssuedTracking:
    """A freshly minted token with its pixel URL and rewritten links."""
    tracking_token: TrackingToken
    pixel_url: str
    link_urls: dict[str, str] = field(default_factory=dict)  # original -> rewritten

    @property
    def token(self) -> str:
        return self.tracking_token.token


def issue_token(
    db: Session,
    activity_id: int,
    links: list[str] | set[str] | tuple[str, ...] = (),
    ttl_days: int | None = None,
) -> IssuedTracking:
    """
    Mint a tracking token for one outbound send.

    Every distinct link gets its own rewritten click URL; all of them and the
    pixel URL resolve back to the same token.
    """
    activity = db.get(Activity, activity_id)
    if not activity:
        raise UnknownActivityError.for_field("activity_id", f"Activity {activity_id} not found")

    unique_links: list[str] = []
    for link in links:
        if link and link not in unique_links:
            unique_links.append(link)

    ttl = settings.TRACKING_TOKEN_TTL_DAYS if ttl_days is None else ttl_days
    now = utcnow()
    tracking_token = TrackingToken(
        token=generate_tracking_token(),
        company_id=activity.company_id,
        activity_id=activity.id,
        links=unique_links,
        created_at=now,
        expires_at=now + timedelta(days=ttl) if ttl > 0 else None,
    )
    db.add(tracking_token)
    db.flush()

    token = tracking_token.token
    return IssuedTracking(
        tracking_token=tracking_token,
        pixel_url=get_tracking_pixel_url(token),
        link_urls={link: get_tracked_link_url(token, link) for link in unique_links},
    )


def get_token(db: Session, token: str, company_id: UUID | None = None) -> TrackingToken | None:
    """Plain lookup, expired tokens included."""
    if not token:
        return None
    query = db.query(TrackingToken).filter(TrackingToken.token == token)
    if company_id is not None:
        query = query.filter(TrackingToken.company_id == company_id)
    return query.first()


def resolve_token(db: Session, token: str) -> TrackingToken:
    """
    Look up a token.

    Raises:
        UnknownTrackingTokenError: token is unknown or expired
    """
    tracking_token = get_token(db, token)
    if not tracking_token:
        raise UnknownTrackingTokenError("Unknown tracking token")
    expires_at = as_utc(tracking_token.expires_at)
    if expires_at is not None and expires_at <= utcnow():
        raise UnknownTrackingTokenError("Tracking token expired")
    return tracking_token


# =============================================================================
# Event Recording
# =============================================================================


def record_open(
    db: Session,
    token: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> EngagementEvent:
    """
    Record an email open event. Every call appends a new event.

    Raises:
        UnknownTrackingTokenError: token is unknown or expired
    """
    tracking_token = resolve_token(db, token)
    event = EngagementEvent(
        tracking_token_id=tracking_token.id,
        event_type=EngagementType.OPEN.value,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(event)
    db.flush()
    return event


def record_click(
    db: Session,
    token: str,
    url: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> tuple[EngagementEvent, str]:
    """
    Record a link click event. Every call appends a new event.

    Returns:
        (event, redirect_url)

    Raises:
        UnknownTrackingTokenError: token is unknown or expired
    """
    tracking_token = resolve_token(db, token)
    original_url = (url or "").strip()
    if original_url and original_url not in (tracking_token.links or []):
        logger.info(f"Click on token {tracking_token.id} for a link not issued with it")

    event = EngagementEvent(
        tracking_token_id=tracking_token.id,
        event_type=EngagementType.CLICK.value,
        url=original_url or None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(event)
    db.flush()
    return event, safe_redirect_target(original_url)


# =============================================================================
# Analytics
# =============================================================================


def get_token_events(
    db: Session,
    tracking_token_id: UUID,
    event_type: Optional[str] = None,
    limit: int = 1000,
) -> list[EngagementEvent]:
    """Engagement events for a token, oldest first."""
    query = db.query(EngagementEvent).filter(
        EngagementEvent.tracking_token_id == tracking_token_id
    )
    if event_type:
        query = query.filter(EngagementEvent.event_type == event_type)
    return query.order_by(EngagementEvent.id.asc()).limit(limit).all()


def engagement_summary(db: Session, tracking_token: TrackingToken) -> dict:
    """Open/click counts and first/last timestamps, derived from the event log."""
    rows = (
        db.query(
            EngagementEvent.event_type,
            func.count(EngagementEvent.id),
            func.min(EngagementEvent.created_at),
            func.max(EngagementEvent.created_at),
        )
        .filter(EngagementEvent.tracking_token_id == tracking_token.id)
        .group_by(EngagementEvent.event_type)
        .all()
    )
    summary = {
        "token": tracking_token.token,
        "activity_id": tracking_token.activity_id,
        "open_count": 0,
        "click_count": 0,
        "first_opened_at": None,
        "last_opened_at": None,
        "first_clicked_at": None,
        "last_clicked_at": None,
    }
    for event_type, count, first_at, last_at in rows:
        if event_type == EngagementType.OPEN.value:
            summary.update(open_count=count, first_opened_at=as_utc(first_at), last_opened_at=as_utc(last_at))
        elif event_type == EngagementType.CLICK.value:
            summary.update(click_count=count, first_clicked_at=as_utc(first_at), last_clicked_at=as_utc(last_at))
    return summary
