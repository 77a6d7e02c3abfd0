"""Utility modules."""

from crm_ingest.utils.datetime_parsing import as_utc, utcnow
from crm_ingest.utils.normalization import (
    is_valid_email,
    names_from_email,
    normalize_email,
    normalize_name,
)

__all__ = [
    # Datetime
    "as_utc",
    "utcnow",
    # Normalization
    "is_valid_email",
    "names_from_email",
    "normalize_email",
    "normalize_name",
]
