"""Shared utility functions used across leadscout modules."""
from __future__ import annotations

import re
from datetime import UTC, datetime
from urllib.parse import urlparse

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """SQLite drops tzinfo; treat naive datetimes as UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp as returned by the GitHub API."""
    if not value:
        return None
    try:
        return ensure_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def days_between(earlier: datetime, later: datetime) -> float:
    return (ensure_aware(later) - ensure_aware(earlier)).total_seconds() / 86400


def normalize_url(website: str) -> str:
    """Turn a bare domain or URL into an absolute URL, defaulting to https."""
    website = website.strip()
    if not _SCHEME_RE.match(website):
        website = "https://" + website
    return website


def normalize_domain(website: str) -> str:
    """Lower-cased host without scheme, ``www.`` prefix, port or path."""
    host = urlparse(normalize_url(website)).hostname or ""
    host = host.lower().rstrip(".")
    return host.removeprefix("www.")


def same_site(url: str, base: str) -> bool:
    return normalize_domain(url) == normalize_domain(base)
