"""
Utility helpers for the dealbot pipeline.

uuid7() wraps fastuuid.uuid7() to return a stdlib uuid.UUID instance.
fastuuid.UUID is a Rust-backed type that is NOT isinstance-compatible with
uuid.UUID, so we roundtrip through the string representation.
"""

from datetime import datetime, timezone
from urllib.parse import urlparse
from uuid import UUID

import fastuuid


def uuid7() -> UUID:
    """Generate a UUIDv7 (time-sortable) as a stdlib uuid.UUID."""
    return UUID(str(fastuuid.uuid7()))


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def elapsed_ms(start: datetime | None, end: datetime | None) -> int | None:
    """Whole milliseconds between two timestamps, or None if either is missing."""
    if start is None or end is None:
        return None
    return round((end - start).total_seconds() * 1000)


def short(value: str | None, length: int = 12) -> str:
    """Abbreviate a CID or address for log lines."""
    if not value:
        return ''
    if len(value) <= length:
        return value
    return f'{value[:length]}...'


def service_url_to_multiaddr(service_url: str) -> str:
    """
    Convert a provider service URL to the multiaddr it announces to IPNI.

    Example: https://sp.example.com/ → /dns/sp.example.com/tcp/443/https
    """
    parsed = urlparse(service_url)
    if not parsed.scheme or not parsed.hostname:
        raise ValueError(f'Failed to convert serviceURL to multiaddr: {service_url!r}')
    return f'/dns/{parsed.hostname}/tcp/443/https'
