"""FastAPI dependencies for database access and API-key authorization."""

from typing import Generator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from crm_ingest.core.security import Capability, validate_api_key
from crm_ingest.db.enums import ApiScope
from crm_ingest.db.session import SessionLocal

API_KEY_HEADER = "X-API-Key"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def extract_api_key(request: Request) -> str | None:
    """Read the key from `Authorization: Bearer <key>` or the X-API-Key header."""
    auth = request.headers.get("authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.headers.get(API_KEY_HEADER) or None


def get_capability(
    request: Request,
    db: Session = Depends(get_db),
) -> Capability:
    """
    Validate the request's API key.

    Raises:
        HTTPException 401: key missing, unknown or deactivated
    """
    raw_key = extract_api_key(request)
    if not raw_key:
        raise HTTPException(status_code=401, detail="Missing API key")
    capability = validate_api_key(db, raw_key)
    if not capability:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return capability


def require_scope(scope: ApiScope):
    """
    Dependency factory: the API key must carry the given scope.

    Usage:
        @router.post("/emails/tracked")
        def compose(capability: Capability = Depends(require_scope(ApiScope.OUTREACH_WRITE))):
            ...
    """

    def dependency(capability: Capability = Depends(get_capability)) -> Capability:
        if not capability.allows(scope):
            raise HTTPException(status_code=403, detail=f"Missing scope: {scope.value}")
        return capability

    return dependency
