import json
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import pytest

from storysync.workflows.cache_store import CacheFamily, CacheStore, MemoryStorage
from storysync.workflows.http_client import RawResponse
from storysync.workflows.sync_config import SyncConfig

BASE_A = "https://api-a.example/wp/v2"
BASE_B = "https://api-b.example/wp/v2"
MIRROR = "https://origin.example/api/posts"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Routes exact URLs to a response, an exception, or a callable(params)."""

    def __init__(self) -> None:
        self.routes: Dict[str, Any] = {}
        self.calls: List[Tuple[str, Dict[str, str]]] = []

    def route(self, url: str, handler: Any) -> None:
        self.routes[url] = handler

    def urls(self) -> List[str]:
        return [url for url, _ in self.calls]

    async def __call__(self, url: str, *, params=None, timeout: float) -> RawResponse:
        query = dict(params or ())
        self.calls.append((url, query))
        handler = self.routes.get(url)
        if handler is None:
            raise aiohttp.ClientConnectionError(f"no route for {url}")
        if isinstance(handler, BaseException):
            raise handler
        if callable(handler):
            handler = handler(query)
        return handler


def json_response(
    payload: Any,
    *,
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
    content_type: str = "application/json; charset=UTF-8",
) -> RawResponse:
    merged = {"content-type": content_type}
    merged.update({k.lower(): v for k, v in (headers or {}).items()})
    return RawResponse(url="fake://", status=status, headers=merged, body=json.dumps(payload).encode("utf-8"))


def raw_post(post_id: int, *, day: int = 1, slug: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    post = {
        "id": post_id,
        "date": f"2024-03-{day:02d}T10:00:00",
        "slug": slug or f"story-{post_id}",
        "title": {"rendered": f"Story {post_id}"},
        "content": {"rendered": f"<p>Body of story {post_id}.</p>"},
        "excerpt": {"rendered": f"<p>Excerpt {post_id}</p>"},
    }
    post.update(extra)
    return post


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> CacheStore:
    ttls = {
        CacheFamily.PAGES: 1800,
        CacheFamily.CONVERTED: 86400,
        CacheFamily.AVAILABILITY: 300,
        CacheFamily.SNAPSHOT: None,
        CacheFamily.DIAGNOSTICS: None,
    }
    return CacheStore(MemoryStorage(), ttls, clock=clock)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def config(tmp_path) -> SyncConfig:
    return SyncConfig(api_bases=(BASE_A, BASE_B), mirror_url=MIRROR, cache_dir=tmp_path / "cache")
