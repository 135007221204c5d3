"""Startup preload that warms the cache without ever failing the caller."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .content_api import ContentSynchronizer, PageQuery, PageResult
from .sync_config import PRELOAD_FALLBACK_PAGE_SIZE, PRELOAD_PAGE_SIZE, PRELOAD_REFRESH_DELAY

logger = logging.getLogger(__name__)


class Preloader:
    """Warm the page cache through a shared :class:`ContentSynchronizer`.

    With a populated snapshot, :meth:`preload` returns at once and refreshes
    after ``refresh_delay`` seconds; otherwise it waits for the refresh.
    """

    def __init__(
        self,
        synchronizer: ContentSynchronizer,
        *,
        refresh_delay: float = PRELOAD_REFRESH_DELAY,
        page_size: int = PRELOAD_PAGE_SIZE,
        fallback_page_size: int = PRELOAD_FALLBACK_PAGE_SIZE,
    ) -> None:
        self.synchronizer = synchronizer
        self.refresh_delay = refresh_delay
        self.page_size = page_size
        self.fallback_page_size = fallback_page_size
        self._pending: Optional[asyncio.Task] = None

    async def preload(self) -> None:
        try:
            snapshot = await self.synchronizer.snapshot.records()
        except Exception as exc:
            logger.warning("preload could not read local snapshot: %s", exc)
            snapshot = []

        if snapshot:
            logger.info("using %d locally synced posts for quick initial load", len(snapshot))
            if self._pending is None or self._pending.done():
                self._pending = asyncio.ensure_future(self._deferred_refresh())
            return

        try:
            await self.refresh()
        except Exception as exc:
            logger.warning("preload failed: %s", exc)

    async def _deferred_refresh(self) -> None:
        await asyncio.sleep(self.refresh_delay)
        try:
            await self.refresh()
        except Exception as exc:
            logger.warning("background refresh failed: %s", exc)

    async def refresh(self) -> PageResult:
        if await self.synchronizer.tracker.is_available():
            result = await self.synchronizer.fetch_page(
                PageQuery(per_page=self.page_size, include_content=False)
            )
            logger.info("preloaded %d posts", len(result.records))
            return result
        logger.info("API unavailable, using fallback directly")
        return await self.synchronizer.fetch_fallback(PageQuery(per_page=self.fallback_page_size))

    async def drain(self, *, cancel: bool = False) -> None:
        """Wait for (or cancel) a scheduled refresh."""

        task, self._pending = self._pending, None
        if task is None:
            return
        if cancel:
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)


__all__ = ["Preloader"]
