"""Small shared helpers: UTC clock and e-mail normalisation."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    """Minimal check used by checkout and download lookups."""
    return bool(email) and "@" in email
