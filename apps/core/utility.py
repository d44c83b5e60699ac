from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
from typing import Optional, Type

from django.utils.dateparse import parse_datetime
from django.utils.text import slugify


def parse_int(value: object, default: int) -> int:
    """Safe int parse with default fallback."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def unique_slug(model: Type, base: str, field: str = "slug", fallback: str = "org") -> str:
    """Generate a unique, URL-safe slug using base and numeric suffix if needed."""
    base = slugify(base) or fallback
    candidate = base
    i = 1
    while model.objects.filter(**{field: candidate}).exists():
        i += 1
        candidate = f"{base}-{i}"
    return candidate


def coerce_datetime(value: object) -> Optional[datetime]:
    """
    Accept a datetime or an ISO 8601 string (with 'Z' or an offset).
    Naive values are taken as UTC. Returns None when unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = parse_datetime(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt is None:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=dt_timezone.utc)
    return dt

