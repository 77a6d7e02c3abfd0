"""API key hashing and capability lookup."""

import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from crm_ingest.db.enums import ApiScope
from crm_ingest.db.models import ApiKey

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "crm_"


@dataclass(frozen=True)
class Capability:
    """What a validated API key is allowed to do, and for which company."""
    company_id: UUID
    scopes: frozenset[str] = field(default_factory=frozenset)
    api_key_id: UUID | None = None

    def allows(self, scope: ApiScope | str) -> bool:
        value = scope.value if isinstance(scope, ApiScope) else scope
        return value in self.scopes


def generate_api_key() -> str:
    """Generate a new raw API key. Only its hash is stored."""
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


def validate_api_key(db: Session, raw_key: str | None) -> Capability | None:
    """
    Resolve a raw API key to its capability.

    Returns None for missing, unknown or deactivated keys.
    """
    if not raw_key:
        return None
    api_key = (
        db.query(ApiKey)
        .filter(ApiKey.key_hash == hash_api_key(raw_key), ApiKey.is_active.is_(True))
        .first()
    )
    if not api_key:
        logger.info("Rejected unknown or inactive API key")
        return None
    return Capability(
        company_id=api_key.company_id,
        scopes=frozenset(api_key.scopes or []),
        api_key_id=api_key.id,
    )
