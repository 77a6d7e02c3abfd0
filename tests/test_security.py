from crm_ingest.core.security import generate_api_key, hash_api_key, validate_api_key
from crm_ingest.db.enums import ApiScope
from crm_ingest.db.models import ApiKey


def test_generate_api_key_is_prefixed_and_unique():
    keys = {generate_api_key() for _ in range(20)}

    assert len(keys) == 20
    assert all(key.startswith("crm_") for key in keys)


def test_validate_api_key_returns_capability(db, tenant):
    capability = validate_api_key(db, tenant.api_key)

    assert capability.company_id == tenant.company_id
    assert capability.allows(ApiScope.LEADS_CREATE)
    assert capability.allows("outreach:write")


def test_validate_api_key_rejects_unknown_and_inactive(db, tenant):
    assert validate_api_key(db, None) is None
    assert validate_api_key(db, "crm_unknown") is None

    api_key = db.query(ApiKey).filter(ApiKey.key_hash == hash_api_key(tenant.api_key)).one()
    api_key.is_active = False
    db.commit()

    assert validate_api_key(db, tenant.api_key) is None
