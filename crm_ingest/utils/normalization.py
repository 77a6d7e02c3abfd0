"""Data normalization utilities for consistent data quality."""

import re
from typing import Optional


# Structural check only: one "@", non-empty local part, dotted domain, no spaces
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase with surrounding whitespace removed.

    Idempotent: normalize_email(normalize_email(x)) == normalize_email(x).

    Args:
        email: Raw email input

    Returns:
        Lowercased email or None if empty
    """
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None


def is_valid_email(email: Optional[str]) -> bool:
    """Return True if the (normalized) address is structurally an email."""
    if not email:
        return False
    return bool(_EMAIL_RE.match(email))


def normalize_name(name: Optional[str]) -> Optional[str]:
    """
    Normalize name by stripping whitespace and collapsing multiple spaces.

    Args:
        name: Raw name input

    Returns:
        Cleaned name or None if empty
    """
    if not name:
        return None
    # Strip leading/trailing whitespace and collapse internal spaces
    return " ".join(name.split()) or None


def names_from_email(email: str) -> tuple[str, str | None]:
    """
    Derive display names from the local part of an address.

    jane.doe@example.com -> ("Jane", "Doe")
    jsmith+news@example.com -> ("Jsmith", None)
    """
    local = email.split("@", 1)[0]
    local = local.split("+", 1)[0]
    parts = [p for p in re.split(r"[._\-]+", local) if p]
    if not parts:
        return local or email, None
    first = parts[0].capitalize()
    last = " ".join(p.capitalize() for p in parts[1:]) or None
    return first, last
