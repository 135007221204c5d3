"""Persistent key/value cache with per-family TTLs.

Storage backends hold plain strings and may raise :class:`StorageError`.
:class:`CacheStore` wraps every access so that caching stays an
optimization: failed writes are logged and swallowed, unreadable entries are
treated as absent.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import time
import uuid
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..core.keys import K_FAMILY, K_PAYLOAD, K_POSTS, K_WRITTEN_AT, KEY_LOCAL_POSTS
from .errors import StorageError
from .post_utils import format_timestamp
from .schema import ContentRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CacheFamily(str, Enum):
    PAGES = "pages"
    CONVERTED = "converted"
    AVAILABILITY = "availability"
    SNAPSHOT = "snapshot"
    DIAGNOSTICS = "diagnostics"


class MemoryStorage:
    """In-process string storage, mostly for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._items)


_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileStorage:
    """One file per key under ``root``; writes are atomic (tmp file + replace)."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{_UNSAFE_FILENAME.sub('_', key)}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"read failed for {key}: {exc}") from exc

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_name(f".tmp-{path.name}-{uuid.uuid4().hex}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            with suppress(OSError):
                tmp_path.unlink()
            raise StorageError(f"write failed for {key}: {exc}") from exc

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"remove failed for {key}: {exc}") from exc

    def keys(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))


@dataclass(frozen=True)
class CacheEntry:
    payload: Any
    written_at: float
    family: CacheFamily

    def age(self, now: float) -> float:
        return now - self.written_at

    def is_expired(self, now: float, ttl: Optional[float]) -> bool:
        if ttl is None:
            return False
        return self.age(now) > ttl


class CacheStore:
    """TTL-aware cache over a string storage backend.

    ``ttls`` maps each family to a lifetime in seconds; ``None`` (or a
    missing family) never expires. Expired entries are removed when read.
    """

    def __init__(
        self,
        storage: Any,
        ttls: Optional[Mapping[CacheFamily, Optional[float]]] = None,
        *,
        clock: Optional[Clock] = None,
        namespace: str = "storysync",
    ) -> None:
        self.storage = storage
        self.ttls: Dict[CacheFamily, Optional[float]] = dict(ttls or {})
        self.clock: Clock = clock or time.time
        self.namespace = namespace
        self._lock = asyncio.Lock()

    def _storage_key(self, family: CacheFamily, key: str) -> str:
        return f"{self.namespace}:{family.value}:{key}"

    def ttl_for(self, family: CacheFamily) -> Optional[float]:
        return self.ttls.get(family)

    def _remove_quietly(self, storage_key: str) -> None:
        try:
            self.storage.remove_item(storage_key)
        except StorageError as exc:
            logger.warning("cache remove failed for %s: %s", storage_key, exc)

    async def get_entry(self, family: CacheFamily, key: str) -> Optional[CacheEntry]:
        storage_key = self._storage_key(family, key)
        try:
            raw = self.storage.get_item(storage_key)
        except StorageError as exc:
            logger.warning("cache read failed for %s: %s", storage_key, exc)
            return None
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            entry = CacheEntry(
                payload=data[K_PAYLOAD],
                written_at=float(data[K_WRITTEN_AT]),
                family=CacheFamily(data.get(K_FAMILY, family.value)),
            )
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("discarding unreadable cache entry %s: %s", storage_key, exc)
            self._remove_quietly(storage_key)
            return None
        if entry.is_expired(self.clock(), self.ttl_for(family)):
            logger.info("cache expired: %s", storage_key)
            self._remove_quietly(storage_key)
            return None
        return entry

    async def get(self, family: CacheFamily, key: str) -> Optional[Any]:
        entry = await self.get_entry(family, key)
        return entry.payload if entry is not None else None

    async def set(self, family: CacheFamily, key: str, value: Any) -> bool:
        """Write ``value``; returns False (after logging) when the write failed."""

        storage_key = self._storage_key(family, key)
        envelope = {K_FAMILY: family.value, K_WRITTEN_AT: self.clock(), K_PAYLOAD: value}
        try:
            self.storage.set_item(storage_key, json.dumps(envelope, ensure_ascii=False))
        except (StorageError, TypeError, ValueError) as exc:
            logger.warning("cache write failed for %s: %s", storage_key, exc)
            return False
        return True

    async def remove(self, family: CacheFamily, key: str) -> None:
        self._remove_quietly(self._storage_key(family, key))

    async def merge(
        self,
        family: CacheFamily,
        key: str,
        updater: Callable[[Optional[Any]], Any],
    ) -> Any:
        """Read-modify-write under the store lock; returns the updated value."""

        async with self._lock:
            current = await self.get(family, key)
            updated = updater(current)
            await self.set(family, key, updated)
            return updated


def _records_from_payload(payload: Any) -> List[ContentRecord]:
    if not isinstance(payload, Mapping):
        return []
    posts = payload.get(K_POSTS)
    if not isinstance(posts, list):
        return []
    return [ContentRecord.from_dict(item) for item in posts if isinstance(item, Mapping)]


def _newest_first(records: Iterable[ContentRecord]) -> List[ContentRecord]:
    return sorted(records, key=lambda r: (r.date, r.id), reverse=True)


class LocalSnapshot:
    """Long-lived merge-only collection of records keyed by id.

    Never expires. Growth is capped at ``max_records`` (oldest publish dates
    dropped first), but a merge never leaves fewer records than it found.
    """

    def __init__(self, store: CacheStore, *, max_records: int = 1000, key: str = KEY_LOCAL_POSTS) -> None:
        self.store = store
        self.max_records = max_records
        self.key = key

    async def records(self) -> List[ContentRecord]:
        payload = await self.store.get(CacheFamily.SNAPSHOT, self.key)
        return _records_from_payload(payload)

    async def updated_at(self) -> Optional[str]:
        payload = await self.store.get(CacheFamily.SNAPSHOT, self.key)
        if isinstance(payload, Mapping):
            return payload.get("updated_at")
        return None

    async def find_by_slug(self, slug: str) -> Optional[ContentRecord]:
        for record in await self.records():
            if record.slug == slug:
                return record
        return None

    async def query(
        self,
        *,
        slug: Optional[str] = None,
        search: Optional[str] = None,
        categories: Iterable[int] = (),
        tags: Iterable[int] = (),
    ) -> List[ContentRecord]:
        """Filter the snapshot in memory, newest first.

        ``search`` is a case-insensitive substring match over title, excerpt
        and body; categories/tags match when any requested id is present.
        """

        wanted_categories = set(categories)
        wanted_tags = set(tags)
        needle = search.strip().lower() if search else ""
        matches: List[ContentRecord] = []
        for record in _newest_first(await self.records()):
            if slug and record.slug != slug:
                continue
            if wanted_categories and not wanted_categories.intersection(record.categories):
                continue
            if wanted_tags and not wanted_tags.intersection(record.tags):
                continue
            if needle and not any(needle in text.lower() for text in (record.title, record.excerpt, record.content)):
                continue
            matches.append(record)
        return matches

    async def merge(self, incoming: Iterable[ContentRecord]) -> int:
        """Merge records by id (incoming wins) and return the snapshot size."""

        incoming = list(incoming)

        def _update(current: Optional[Any]) -> Dict[str, Any]:
            existing = _records_from_payload(current)
            by_id = {record.id: record for record in existing}
            for record in incoming:
                by_id[record.id] = record
            limit = max(self.max_records, len(existing))
            merged = _newest_first(by_id.values())[:limit]
            return {
                K_POSTS: [record.to_dict() for record in merged],
                "updated_at": format_timestamp_now(self.store.clock),
            }

        updated = await self.store.merge(CacheFamily.SNAPSHOT, self.key, _update)
        return len(updated[K_POSTS])


def format_timestamp_now(clock: Clock) -> str:
    return format_timestamp(datetime.fromtimestamp(clock(), tz=timezone.utc))


__all__ = [
    "CacheFamily",
    "CacheEntry",
    "CacheStore",
    "JsonFileStorage",
    "LocalSnapshot",
    "MemoryStorage",
]
