"""Multi-source post fetching with cache, snapshot and mirror fallbacks.

``ContentSynchronizer`` owns every piece of mutable state (cache store,
availability tracker, local snapshot, in-flight requests and background
tasks). A listing request goes through these tiers in order:

1. page cache (unless ``skip_cache``)
2. each configured API base, once, in priority order
3. the local snapshot, filtered and paginated in memory
4. the internal mirror
5. an empty result

Listing operations never raise; only single-post lookup raises
:class:`PostNotFoundError`.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Sequence, Set, Tuple
from urllib.parse import quote

import aiohttp

from ..core.keys import (
    HDR_TOTAL,
    HDR_TOTAL_PAGES,
    K_CONTENT,
    K_CREATED_AT,
    K_DATE,
    K_EXCERPT,
    K_HAS_MORE,
    K_ID,
    K_POSTS,
    K_SLUG,
    K_TITLE,
)
from .attempts import AttemptFactory, AttemptResult, run_attempts
from .availability import AvailabilityTracker
from .cache_store import CacheFamily, CacheStore, JsonFileStorage, LocalSnapshot
from .errors import PostNotFoundError, SourceError
from .html_sanitize import html_to_text, minimal_text_fix, sanitize_html
from .http_client import AiohttpTransport, RawResponse, Transport, build_params
from .post_utils import format_timestamp, get_excerpt, reading_time_minutes, stable_key
from .schema import ContentRecord, Rejected, Repaired, coerce_post, validate_post
from .status import STATUS_ERROR, STATUS_SUCCESS, STATUS_WARNING, StatusReporter
from .sync_config import (
    DEFAULT_PAGE,
    DEFAULT_PER_PAGE,
    JSON_MIME,
    MIRROR_EXCERPT_CHARS,
    POSTS_PATH,
    SLUG_REFRESH_DELAY,
    SUMMARY_FIELDS,
    SYNC_MAX_PAGES,
    SYNC_PER_PAGE,
    SyncConfig,
    load_config,
)

logger = logging.getLogger(__name__)

SOURCE_SNAPSHOT = "local_snapshot"
SOURCE_MIRROR = "mirror"
SOURCE_EMPTY = "empty"


@dataclass(frozen=True)
class PageQuery:
    """Parameters of one listing request."""

    page: int = DEFAULT_PAGE
    per_page: int = DEFAULT_PER_PAGE
    categories: Tuple[int, ...] = ()
    tags: Tuple[int, ...] = ()
    search: Optional[str] = None
    slug: Optional[str] = None
    include_content: bool = True
    skip_cache: bool = False

    def normalized(self) -> "PageQuery":
        return replace(
            self,
            page=max(1, int(self.page)),
            per_page=max(1, int(self.per_page)),
            categories=tuple(sorted(set(self.categories))),
            tags=tuple(sorted(set(self.tags))),
            search=(self.search or "").strip() or None,
            slug=(self.slug or "").strip() or None,
        )

    def cache_params(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "per_page": self.per_page,
            "categories": list(self.categories),
            "tags": list(self.tags),
            "search": self.search,
            "slug": self.slug,
            "include_content": self.include_content,
        }

    def cache_key(self) -> str:
        return f"posts:{stable_key(self.cache_params())}"

    def request_params(self) -> List[Tuple[str, str]]:
        return build_params(
            {
                "page": self.page,
                "per_page": self.per_page,
                "categories": self.categories,
                "tags": self.tags,
                "search": self.search,
                "slug": self.slug,
                "_fields": None if self.include_content else SUMMARY_FIELDS,
            }
        )


@dataclass
class PageResult:
    """One page of records plus where it came from."""

    records: List[ContentRecord] = field(default_factory=list)
    total_pages: int = 0
    total: int = 0
    from_cache: bool = False
    from_local_sync: bool = False
    from_fallback: bool = False
    source: Optional[str] = None
    attempts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            K_POSTS: [record.to_dict() for record in self.records],
            "total_pages": self.total_pages,
            "total": self.total,
            "from_cache": self.from_cache,
            "from_local_sync": self.from_local_sync,
            "from_fallback": self.from_fallback,
            "source": self.source,
        }
        if self.attempts:
            payload["attempts"] = list(self.attempts)
        return payload

    def cache_payload(self) -> Dict[str, Any]:
        return {
            K_POSTS: [record.to_dict() for record in self.records],
            "total_pages": self.total_pages,
            "total": self.total,
            "source": self.source,
        }

    @classmethod
    def from_cache_payload(cls, payload: Mapping[str, Any]) -> "PageResult":
        posts = payload[K_POSTS]
        if not isinstance(posts, list):
            raise ValueError("cached page has no post list")
        return cls(
            records=[coerce_post(item) for item in posts],
            total_pages=int(payload.get("total_pages", 0)),
            total=int(payload.get("total", 0)),
            from_cache=True,
            source=payload.get("source"),
        )


@dataclass(frozen=True)
class DisplayPost:
    """Render-ready post: plain title and excerpt, sanitized body."""

    id: int
    slug: str
    title: str
    content: str
    excerpt: str
    created_at: str
    reading_time: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "content": self.content,
            "excerpt": self.excerpt,
            "created_at": self.created_at,
            "reading_time": self.reading_time,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DisplayPost":
        return cls(
            id=int(payload["id"]),
            slug=str(payload["slug"]),
            title=str(payload["title"]),
            content=str(payload["content"]),
            excerpt=str(payload["excerpt"]),
            created_at=str(payload["created_at"]),
            reading_time=int(payload["reading_time"]),
        )


@dataclass
class SyncReport:
    pages: int = 0
    records: int = 0
    snapshot_size: int = 0
    source: Optional[str] = None
    complete: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pages": self.pages,
            "records": self.records,
            "snapshot_size": self.snapshot_size,
            "source": self.source,
            "complete": self.complete,
            "errors": list(self.errors),
        }


def _header_int(response: RawResponse, name: str, default: int) -> int:
    raw = response.header(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _mirror_post_to_raw(post: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a mirror post (flat strings, ``createdAt``) onto the upstream shape."""

    content = post.get(K_CONTENT)
    excerpt = post.get(K_EXCERPT)
    if not excerpt and isinstance(content, str):
        excerpt = content[:MIRROR_EXCERPT_CHARS] + "..."
    return {
        K_ID: post.get(K_ID),
        K_DATE: post.get(K_CREATED_AT) or post.get(K_DATE),
        K_SLUG: post.get(K_SLUG),
        K_TITLE: post.get(K_TITLE),
        K_CONTENT: content,
        K_EXCERPT: excerpt,
    }


def build_store(config: SyncConfig, *, clock=None) -> CacheStore:
    """File-backed store under ``config.cache_dir`` with the configured TTLs."""

    ttls = {
        CacheFamily.PAGES: config.page_ttl,
        CacheFamily.CONVERTED: config.converted_ttl,
        CacheFamily.AVAILABILITY: config.availability_ttl,
        CacheFamily.SNAPSHOT: None,
        CacheFamily.DIAGNOSTICS: None,
    }
    return CacheStore(JsonFileStorage(config.cache_dir), ttls, clock=clock)


class ContentSynchronizer:
    """Fetch orchestrator. Build once and share; call :meth:`aclose` when done."""

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        *,
        store: Optional[CacheStore] = None,
        transport: Optional[Transport] = None,
        clock=None,
        slug_refresh_delay: float = SLUG_REFRESH_DELAY,
    ) -> None:
        self.config = config or load_config()
        self.store = store or build_store(self.config, clock=clock or time.time)
        self._owns_transport = transport is None
        self.transport: Transport = transport or AiohttpTransport(
            user_agent=self.config.user_agent,
            headers=self.config.extra_headers,
        )
        self.reporter = StatusReporter(self.store)
        self.tracker = AvailabilityTracker(
            self.config.api_bases,
            self.store,
            self.transport,
            timeout=self.config.probe_timeout,
            reporter=self.reporter,
        )
        self.snapshot = LocalSnapshot(self.store, max_records=self.config.snapshot_max_records)
        self.slug_refresh_delay = slug_refresh_delay
        self._inflight: Dict[str, "asyncio.Future[PageResult]"] = {}
        self._background: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "ContentSynchronizer":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    async def fetch_page(self, query: Optional[PageQuery] = None, **params: Any) -> PageResult:
        """Return one page of posts; never raises for source or storage failures."""

        query = (query or PageQuery(**params)).normalized()
        if not self.config.single_flight:
            return await self._fetch_page(query)

        key = f"{query.cache_key()}:{int(query.skip_cache)}"
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(self._fetch_page(query))
            self._inflight[key] = future
            future.add_done_callback(lambda _f, k=key: self._inflight.pop(k, None))
        else:
            logger.debug("joining in-flight fetch for page %s", query.page)
        return await asyncio.shield(future)

    async def fetch_fallback(self, query: Optional[PageQuery] = None, **params: Any) -> PageResult:
        """Skip the API bases and serve from snapshot, mirror, or nothing."""

        query = (query or PageQuery(**params)).normalized()
        winner, history = await run_attempts(self._fallback_attempts(query))
        return await self._finish(winner, history)

    def _use_cache(self, query: PageQuery) -> bool:
        return not (query.skip_cache or self.config.disable_cache)

    async def _fetch_page(self, query: PageQuery) -> PageResult:
        cache_key = query.cache_key()
        if self._use_cache(query):
            cached = await self.store.get(CacheFamily.PAGES, cache_key)
            if cached is not None:
                try:
                    result = PageResult.from_cache_payload(cached)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("discarding malformed cached page %s: %s", cache_key, exc)
                    await self.store.remove(CacheFamily.PAGES, cache_key)
                else:
                    logger.info("using cached data for page %d", query.page)
                    return result

        attempts = self._source_attempts(query) + self._fallback_attempts(query)
        winner, history = await run_attempts(attempts)
        return await self._finish(winner, history)

    async def _finish(self, winner: Optional[AttemptResult], history: List[AttemptResult]) -> PageResult:
        names = [attempt.name for attempt in history]
        if winner is None:
            # The empty tier always answers, so this only happens on unexpected failures.
            logger.error("every tier failed: %s", names)
            return PageResult(from_fallback=True, source=SOURCE_EMPTY, attempts=names)
        result: PageResult = winner.value
        result.attempts = names
        return result

    def _source_attempts(self, query: PageQuery) -> List[Tuple[str, AttemptFactory]]:
        return [
            (f"source:{base}", lambda base=base: self._fetch_from_source(base, query))
            for base in self.config.api_bases
        ]

    def _fallback_attempts(self, query: PageQuery) -> List[Tuple[str, AttemptFactory]]:
        attempts: List[Tuple[str, AttemptFactory]] = [
            (SOURCE_SNAPSHOT, lambda: self._fetch_from_snapshot(query)),
        ]
        if self.config.mirror_url:
            attempts.append((SOURCE_MIRROR, lambda: self._fetch_from_mirror(query)))
        attempts.append((SOURCE_EMPTY, lambda: self._empty_result(query)))
        return attempts

    def _validate_all(
        self, payload: Sequence[Any], source: str
    ) -> Tuple[List[ContentRecord], List[ContentRecord]]:
        """Return every usable record, and the subset whose id came from upstream."""

        records: List[ContentRecord] = []
        keyed: List[ContentRecord] = []
        repaired = 0
        for raw in payload:
            outcome = validate_post(raw)
            if isinstance(outcome, (Repaired, Rejected)):
                repaired += 1
                logger.debug("record from %s repaired: %s", source, ", ".join(outcome.reasons))
            records.append(outcome.record)
            # A synthesized id could collide with a real post in the snapshot.
            if "id_missing" not in outcome.reasons:
                keyed.append(outcome.record)
        if repaired:
            logger.info("%d of %d records from %s needed repair", repaired, len(records), source)
        return records, keyed

    async def _get_json(self, source: str, url: str, params: Sequence[Tuple[str, str]]) -> Tuple[RawResponse, Any]:
        try:
            response = await self.transport(url, params=params, timeout=self.config.timeout)
        except asyncio.TimeoutError as exc:
            raise SourceError(source, "timeout") from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise SourceError(source, f"{type(exc).__name__}: {exc}") from exc
        if not response.ok:
            raise SourceError(source, f"HTTP {response.status}", status=response.status)
        if JSON_MIME not in response.content_type:
            raise SourceError(source, f"unexpected content-type: {response.content_type or 'none'}")
        try:
            return response, response.json()
        except ValueError as exc:
            raise SourceError(source, "invalid JSON response") from exc

    async def _fetch_from_source(self, base: str, query: PageQuery) -> PageResult:
        url = f"{base}/{POSTS_PATH}"
        try:
            response, payload = await self._get_json(base, url, query.request_params())
            if not isinstance(payload, list):
                raise SourceError(base, f"expected a JSON array, got {type(payload).__name__}")
        except SourceError as exc:
            await self.reporter.record_error(base, str(exc))
            raise

        records, keyed = self._validate_all(payload, base)
        result = PageResult(
            records=records,
            total_pages=_header_int(response, HDR_TOTAL_PAGES, 1 if records else 0),
            total=_header_int(response, HDR_TOTAL, len(records)),
            source=base,
        )
        # skip_cache bypasses the read only; a fresh result still replaces the entry.
        if not self.config.disable_cache:
            await self.store.set(CacheFamily.PAGES, query.cache_key(), result.cache_payload())
        if query.include_content and keyed:
            await self.snapshot.merge(keyed)
        await self.reporter.report(STATUS_SUCCESS, "api_success", f"Fetched {len(records)} posts")
        logger.info("fetched %d posts from %s (page %d)", len(records), base, query.page)
        return result

    async def _fetch_from_snapshot(self, query: PageQuery) -> Optional[PageResult]:
        matches = await self.snapshot.query(
            slug=query.slug,
            search=query.search,
            categories=query.categories,
            tags=query.tags,
        )
        if not matches:
            logger.info("local snapshot has no match for this request")
            return None
        start = (query.page - 1) * query.per_page
        page_records = matches[start : start + query.per_page]
        await self.reporter.report(
            STATUS_WARNING,
            "local_sync_fallback",
            f"Serving {len(page_records)} posts from local snapshot",
        )
        logger.info("using %d locally synced posts as fallback", len(matches))
        return PageResult(
            records=page_records,
            total_pages=math.ceil(len(matches) / query.per_page),
            total=len(matches),
            from_local_sync=True,
            from_fallback=True,
            source=SOURCE_SNAPSHOT,
        )

    async def _fetch_from_mirror(self, query: PageQuery) -> PageResult:
        mirror = (self.config.mirror_url or "").rstrip("/")
        try:
            if query.slug:
                _, payload = await self._get_json(SOURCE_MIRROR, f"{mirror}/{quote(query.slug, safe='')}", [])
                if not isinstance(payload, Mapping):
                    raise SourceError(SOURCE_MIRROR, "expected a single post object")
                posts: List[Any] = [payload]
                has_more = False
            else:
                params = build_params({"page": query.page, "limit": query.per_page})
                _, payload = await self._get_json(SOURCE_MIRROR, mirror, params)
                if not isinstance(payload, Mapping):
                    raise SourceError(SOURCE_MIRROR, "expected an object with posts")
                raw_posts = payload.get(K_POSTS)
                posts = raw_posts if isinstance(raw_posts, list) else []
                has_more = bool(payload.get(K_HAS_MORE))
        except SourceError as exc:
            await self.reporter.record_error(SOURCE_MIRROR, str(exc))
            raise

        raw = [_mirror_post_to_raw(post) if isinstance(post, Mapping) else post for post in posts]
        records, _ = self._validate_all(raw, SOURCE_MIRROR)
        if query.slug:
            total_pages = 1
        else:
            total_pages = query.page + 1 if has_more else query.page
        await self.reporter.report(STATUS_WARNING, "mirror_fallback", f"Fetched {len(records)} posts from mirror")
        logger.info("mirror fallback returned %d posts", len(records))
        return PageResult(
            records=records,
            total_pages=total_pages,
            total=len(records),
            from_fallback=True,
            source=SOURCE_MIRROR,
        )

    async def _empty_result(self, query: PageQuery) -> PageResult:
        await self.reporter.report(STATUS_ERROR, "fetch_exhausted", "No content source produced posts")
        logger.warning("all tiers exhausted for page %d; returning empty result", query.page)
        return PageResult(from_fallback=True, source=SOURCE_EMPTY)

    # ------------------------------------------------------------------
    # Single post
    # ------------------------------------------------------------------
    async def fetch_post_by_slug(self, slug: str) -> ContentRecord:
        """Return the post for ``slug`` or raise :class:`PostNotFoundError`.

        A snapshot hit is returned immediately and a fresh copy is fetched in
        the background.
        """

        local = await self.snapshot.find_by_slug(slug)
        if local is not None:
            logger.info("found post %s in local snapshot", slug)
            self._schedule(self._refresh_slug(slug), f"refresh:{slug}")
            return local

        query = PageQuery(slug=slug, per_page=1)
        result = await self.fetch_page(query)
        if not result.records and not result.from_fallback:
            # The API answered with nothing; the mirror may still know the slug.
            result = await self.fetch_fallback(query)
        if not result.records:
            raise PostNotFoundError(slug)
        return result.records[0]

    async def _refresh_slug(self, slug: str) -> None:
        await asyncio.sleep(self.slug_refresh_delay)
        await self.fetch_page(PageQuery(slug=slug, per_page=1, skip_cache=True))

    def _schedule(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)

        def _done(done: asyncio.Task) -> None:
            self._background.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                logger.warning("background task %s failed: %s", name, exc)

        task.add_done_callback(_done)
        return task

    # ------------------------------------------------------------------
    # Display conversion
    # ------------------------------------------------------------------
    def convert_post(self, record: ContentRecord) -> DisplayPost:
        content = sanitize_html(record.content)
        excerpt = html_to_text(record.excerpt) or get_excerpt(content)
        return DisplayPost(
            id=record.id,
            slug=record.slug,
            title=minimal_text_fix(html_to_text(record.title)),
            content=content,
            excerpt=minimal_text_fix(excerpt),
            created_at=format_timestamp(record.date),
            reading_time=reading_time_minutes(content),
        )

    async def get_converted_post(self, slug: str) -> DisplayPost:
        if not self.config.disable_cache:
            cached = await self.store.get(CacheFamily.CONVERTED, slug)
            if isinstance(cached, Mapping):
                try:
                    return DisplayPost.from_dict(cached)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("discarding malformed converted post %s: %s", slug, exc)
                    await self.store.remove(CacheFamily.CONVERTED, slug)

        post = self.convert_post(await self.fetch_post_by_slug(slug))
        if not self.config.disable_cache:
            await self.store.set(CacheFamily.CONVERTED, slug, post.to_dict())
        return post

    # ------------------------------------------------------------------
    # Snapshot crawl
    # ------------------------------------------------------------------
    async def sync_snapshot(self, max_pages: int = SYNC_MAX_PAGES, per_page: int = SYNC_PER_PAGE) -> SyncReport:
        """Crawl the API page by page into the local snapshot."""

        report = SyncReport()
        for page in range(1, max_pages + 1):
            query = PageQuery(page=page, per_page=per_page, skip_cache=True)
            winner, history = await run_attempts(self._source_attempts(query))
            if winner is None:
                report.errors.extend(f"{a.name}: {a.error}" for a in history if a.error)
                logger.warning("snapshot sync stopped at page %d: no source answered", page)
                break
            result: PageResult = winner.value
            report.pages += 1
            report.records += len(result.records)
            report.source = result.source
            if not result.records or page >= result.total_pages or len(result.records) < per_page:
                report.complete = True
                break
        report.snapshot_size = len(await self.snapshot.records())
        logger.info(
            "snapshot sync: %d pages, %d records, snapshot size %d",
            report.pages,
            report.records,
            report.snapshot_size,
        )
        return report

    # ------------------------------------------------------------------
    # Diagnostics / lifecycle
    # ------------------------------------------------------------------
    async def status(self) -> Dict[str, Any]:
        availability = await self.tracker.last_record()
        records = await self.snapshot.records()
        diagnostics = await self.reporter.read()
        return {
            "api_bases": list(self.config.api_bases),
            "mirror_url": self.config.mirror_url,
            "availability": availability.to_dict() if availability else None,
            "snapshot": {
                "size": len(records),
                "updated_at": await self.snapshot.updated_at(),
                "newest": records[0].slug if records else None,
            },
            **diagnostics,
        }

    async def aclose(self) -> None:
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        if self._owns_transport and isinstance(self.transport, AiohttpTransport):
            await self.transport.close()


__all__ = [
    "ContentSynchronizer",
    "DisplayPost",
    "PageQuery",
    "PageResult",
    "SyncReport",
    "build_store",
]
