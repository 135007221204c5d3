"""Shared helper functions used when presenting posts."""

from __future__ import annotations

import hashlib
import json
import math
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .html_sanitize import html_to_text
from .sync_config import EXCERPT_CHARS, WORDS_PER_MINUTE


def get_excerpt(content: str, max_length: int = EXCERPT_CHARS) -> str:
    """Return a plain-text excerpt, truncated at a word boundary."""

    plain = html_to_text(content)
    if len(plain) <= max_length:
        return plain
    truncated = plain[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        truncated = truncated[:last_space]
    return f"{truncated.rstrip()}..."


def reading_time_minutes(content: str) -> int:
    """Estimated reading time in whole minutes (at least one)."""

    plain = html_to_text(content)
    if not plain:
        return 0
    words = len(plain.split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime, or None."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        # WordPress "date" is site-local without offset; treat as UTC.
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def stable_key(params: Mapping[str, Any]) -> str:
    """Deterministic key for a parameter mapping (sorted-key JSON, sha256)."""

    payload = json.dumps(params, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def sanity_check() -> None:
    assert get_excerpt("<p>one two three</p>", 7) == "one..."
    assert reading_time_minutes("<p>word</p>") == 1
    assert stable_key({"a": 1, "b": 2}) == stable_key({"b": 2, "a": 1})


sanity_check()

__all__ = [
    "get_excerpt",
    "reading_time_minutes",
    "parse_timestamp",
    "format_timestamp",
    "stable_key",
    "sanity_check",
]
