"""Synchronization defaults (endpoints, TTLs, sanitizer lists, paths).

Centralizes static defaults so the orchestrator has no embedded magic
strings. ``load_config`` builds a :class:`SyncConfig` from these baselines
plus ``STORYSYNC_*`` environment overrides; callers can also construct their
own config directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set, Tuple

# Endpoints / headers
API_BASES: Tuple[str, ...] = (
    "https://public-api.wordpress.com/wp/v2/sites/bubbleteameimei.wordpress.com",
    "https://bubbleteameimei.wordpress.com/wp-json/wp/v2",
)
POSTS_PATH = "posts"
HDR_ACCEPT = "Accept"
JSON_MIME = "application/json"
USER_AGENT = "storysync/0.1 (+content-sync)"
SUMMARY_FIELDS = "id,date,title,excerpt,slug,featured_media"
PROBE_FIELDS = "id"

# Timeouts (seconds)
REQUEST_TIMEOUT = 15.0
PROBE_TIMEOUT = 10.0

# Cache TTLs (seconds). None means the family never expires.
PAGE_TTL = 30 * 60
CONVERTED_TTL = 24 * 60 * 60
AVAILABILITY_TTL = 5 * 60

# Local snapshot
SNAPSHOT_MAX_RECORDS = 1000
SYNC_MAX_PAGES = 10
SYNC_PER_PAGE = 100

# Paging defaults
DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 10
MIRROR_EXCERPT_CHARS = 150

# Preloader
PRELOAD_REFRESH_DELAY = 3.0
PRELOAD_PAGE_SIZE = 3
PRELOAD_FALLBACK_PAGE_SIZE = 5
SLUG_REFRESH_DELAY = 1.0

# Paths
CACHE_DIR = Path(".storysync") / "cache"

# Sanitizer lists
STRIP_SUBTREE_TAGS = {
    "header",
    "footer",
    "nav",
    "form",
    "button",
    "script",
    "style",
    "noscript",
    "meta",
    "link",
    "head",
    "title",
    "template",
}
BLOCKED_CLASS_TOKENS = (
    "social",
    "share",
    "sharing",
    "follow",
    "navigation",
    "nav-links",
    "related",
    "comments",
    "sharedaddy",
    "jp-relatedposts",
    "jp-post-flair",
)
MEDIA_TAGS = {
    "img",
    "picture",
    "figure",
    "video",
    "audio",
    "source",
    "track",
    "iframe",
    "embed",
    "object",
    "svg",
    "canvas",
    "map",
}
CONTAINER_TAGS = {"div", "section", "article", "aside", "main", "span"}
LINE_BREAK_TAGS = {"br", "hr"}
ALLOWED_TAGS = {"p", "em", "i", "strong", "b", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote"}
BLOCK_TAGS = {"p", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote"}

# Placeholder record text
PLACEHOLDER_TITLE = "Untitled Post"
PLACEHOLDER_CONTENT = "Content unavailable"
EXCERPT_CHARS = 200
WORDS_PER_MINUTE = 225


def _env_int(name: str, default: int) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


def _split_env_list(value: str) -> Tuple[str, ...]:
    # Preserve order but drop duplicates
    seen: Set[str] = set()
    ordered: List[str] = []
    for token in value.split(","):
        cleaned = token.strip().rstrip("/")
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        ordered.append(cleaned)
    return tuple(ordered)


@dataclass
class SyncConfig:
    """Configuration for the content synchronizer and its cache."""

    api_bases: Tuple[str, ...] = API_BASES
    mirror_url: Optional[str] = None
    cache_dir: Path = CACHE_DIR
    timeout: float = REQUEST_TIMEOUT
    probe_timeout: float = PROBE_TIMEOUT
    page_ttl: Optional[float] = PAGE_TTL
    converted_ttl: Optional[float] = CONVERTED_TTL
    availability_ttl: Optional[float] = AVAILABILITY_TTL
    snapshot_max_records: int = SNAPSHOT_MAX_RECORDS
    disable_cache: bool = False
    single_flight: bool = True
    user_agent: str = USER_AGENT
    extra_headers: dict = field(default_factory=dict)


def load_config(**overrides: object) -> SyncConfig:
    """Build a :class:`SyncConfig` from defaults plus ``STORYSYNC_*`` env vars.

    ``STORYSYNC_API_BASES`` replaces the default bases; ``STORYSYNC_API_URL``
    is tried before whichever list is in effect.
    """

    bases = _split_env_list(os.getenv("STORYSYNC_API_BASES", "")) or API_BASES
    preferred = os.getenv("STORYSYNC_API_URL", "").strip().rstrip("/")
    if preferred:
        bases = (preferred,) + tuple(b for b in bases if b != preferred)

    mirror = os.getenv("STORYSYNC_MIRROR_URL", "").strip().rstrip("/") or None
    cache_dir = Path(os.getenv("STORYSYNC_CACHE_DIR", "") or CACHE_DIR)

    config = SyncConfig(
        api_bases=bases,
        mirror_url=mirror,
        cache_dir=cache_dir,
        timeout=_env_float("STORYSYNC_TIMEOUT", REQUEST_TIMEOUT),
        probe_timeout=_env_float("STORYSYNC_PROBE_TIMEOUT", PROBE_TIMEOUT),
        page_ttl=_env_int("STORYSYNC_PAGE_TTL", PAGE_TTL),
        converted_ttl=_env_int("STORYSYNC_CONVERTED_TTL", CONVERTED_TTL),
        availability_ttl=_env_int("STORYSYNC_AVAILABILITY_TTL", AVAILABILITY_TTL),
        snapshot_max_records=max(1, _env_int("STORYSYNC_SNAPSHOT_MAX", SNAPSHOT_MAX_RECORDS)),
        disable_cache=_env_bool("STORYSYNC_CACHE_DISABLE", "0"),
        single_flight=_env_bool("STORYSYNC_SINGLE_FLIGHT", "1"),
    )
    for name, value in overrides.items():
        if not hasattr(config, name):
            raise TypeError(f"Unknown config field: {name}")
        setattr(config, name, value)
    return config


__all__ = [
    "API_BASES",
    "SyncConfig",
    "load_config",
]
