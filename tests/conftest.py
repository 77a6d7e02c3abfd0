"""
Test configuration and fixtures.

Provides:
- A file-backed SQLite database, rebuilt for every test (threads in the
  concurrency tests need real commits, so there is no outer savepoint)
- A seeded tenant: company, BCC address, users, pipeline stages, API keys
- HTTPX AsyncClient bound to the test session
"""
import os
import tempfile
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

_TEST_DIR = tempfile.mkdtemp(prefix="crm-ingest-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR}/test.db"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ["API_BASE_URL"] = "https://crm.test"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from crm_ingest.core.deps import get_db
from crm_ingest.core.security import Capability, generate_api_key, hash_api_key
from crm_ingest.db.base import Base
from crm_ingest.db.enums import ApiScope
from crm_ingest.db.models import ApiKey, Company, DealStage, User
from crm_ingest.db.session import SessionLocal, engine
from crm_ingest.main import app


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test; the session is closed before tables are dropped."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@dataclass
class Tenant:
    """Plain identifiers for the seeded company (no ORM state to refresh)."""
    company_id: uuid.UUID
    bcc_address: str
    user_id: uuid.UUID
    user_email: str
    other_user_email: str
    entry_stage_id: uuid.UUID
    api_key: str
    read_only_key: str

    @property
    def capability(self) -> Capability:
        return Capability(
            company_id=self.company_id,
            scopes=frozenset(scope.value for scope in ApiScope),
        )


def seed_tenant(db: Session, name: str = "Acme") -> Tenant:
    slug = uuid.uuid4().hex[:8]
    company = Company(name=name, inbound_bcc_address=f"bcc-{slug}@inbound.crm.test")
    db.add(company)
    db.flush()

    user = User(
        company_id=company.id,
        email=f"rep-{slug}@acme.test",
        display_name="Sales Rep",
        email_signature="<p>-- Sales Rep</p>",
    )
    other = User(
        company_id=company.id,
        email=f"manager-{slug}@acme.test",
        display_name="Manager",
    )
    db.add_all([user, other])

    lead_stage = DealStage(company_id=company.id, name="Lead", position=0)
    db.add_all([DealStage(company_id=company.id, name="Qualified", position=1), lead_stage])

    raw_key = generate_api_key()
    read_only_key = generate_api_key()
    db.add_all([
        ApiKey(
            company_id=company.id,
            name="Integration",
            key_hash=hash_api_key(raw_key),
            scopes=[scope.value for scope in ApiScope],
        ),
        ApiKey(
            company_id=company.id,
            name="Reporting",
            key_hash=hash_api_key(read_only_key),
            scopes=[ApiScope.PEOPLE_READ.value],
        ),
    ])
    db.flush()

    tenant = Tenant(
        company_id=company.id,
        bcc_address=company.inbound_bcc_address,
        user_id=user.id,
        user_email=user.email,
        other_user_email=other.email,
        entry_stage_id=lead_stage.id,
        api_key=raw_key,
        read_only_key=read_only_key,
    )
    db.commit()
    return tenant


@pytest.fixture(scope="function")
def tenant(db: Session) -> Tenant:
    return seed_tenant(db)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient for testing public endpoints.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def api_client(db: Session, tenant: Tenant) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient carrying the tenant's full-scope API key."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {tenant.api_key}"},
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def make_tenant(db: Session):
    """Seed additional companies (for cross-tenant checks)."""
    def factory(name: str = "Globex") -> Tenant:
        return seed_tenant(db, name=name)

    return factory
