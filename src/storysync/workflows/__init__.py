"""High-level exports for the storysync workflows."""

from .availability import AvailabilityRecord, AvailabilityTracker
from .cache_store import CacheFamily, CacheStore, JsonFileStorage, LocalSnapshot, MemoryStorage
from .content_api import ContentSynchronizer, DisplayPost, PageQuery, PageResult, SyncReport, build_store
from .errors import PostNotFoundError, SourceError, StorageError, StorySyncError
from .html_sanitize import html_to_text, sanitize_html
from .preloader import Preloader
from .schema import ContentRecord, Rejected, Repaired, Valid, coerce_post, validate_post
from .sync_config import SyncConfig, load_config

__all__ = [
    "AvailabilityRecord",
    "AvailabilityTracker",
    "CacheFamily",
    "CacheStore",
    "ContentRecord",
    "ContentSynchronizer",
    "DisplayPost",
    "JsonFileStorage",
    "LocalSnapshot",
    "MemoryStorage",
    "PageQuery",
    "PageResult",
    "PostNotFoundError",
    "Preloader",
    "Rejected",
    "Repaired",
    "SourceError",
    "StorageError",
    "StorySyncError",
    "SyncConfig",
    "SyncReport",
    "Valid",
    "build_store",
    "coerce_post",
    "html_to_text",
    "load_config",
    "sanitize_html",
    "validate_post",
]
