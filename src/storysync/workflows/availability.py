"""Source availability tracking with a short-lived cached verdict."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional, Sequence

import aiohttp

from ..core.keys import KEY_API_STATUS
from .cache_store import CacheFamily, CacheStore
from .errors import StorySyncError
from .http_client import Transport, build_params
from .status import STATUS_SUCCESS, STATUS_WARNING, StatusReporter
from .sync_config import POSTS_PATH, PROBE_FIELDS, PROBE_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityRecord:
    available: bool
    checked_at: float
    error: Optional[str] = None
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AvailabilityRecord":
        return cls(
            available=bool(payload.get("available")),
            checked_at=float(payload.get("checked_at") or 0.0),
            error=payload.get("error"),
            source=payload.get("source"),
        )


class AvailabilityTracker:
    """Probe candidate bases in order; remember the verdict for the family TTL."""

    def __init__(
        self,
        bases: Sequence[str],
        store: CacheStore,
        transport: Transport,
        *,
        timeout: float = PROBE_TIMEOUT,
        reporter: Optional[StatusReporter] = None,
    ) -> None:
        self.bases = tuple(bases)
        self.store = store
        self.transport = transport
        self.timeout = timeout
        self.reporter = reporter or StatusReporter(store)
        self.probe_count = 0

    async def last_record(self) -> Optional[AvailabilityRecord]:
        payload = await self.store.get(CacheFamily.AVAILABILITY, KEY_API_STATUS)
        if not isinstance(payload, Mapping):
            return None
        try:
            return AvailabilityRecord.from_dict(payload)
        except (TypeError, ValueError):
            await self.store.remove(CacheFamily.AVAILABILITY, KEY_API_STATUS)
            return None

    async def _probe(self, base: str) -> Optional[str]:
        """Return None when ``base`` answered 2xx, else a short error string."""

        self.probe_count += 1
        url = f"{base}/{POSTS_PATH}"
        params = build_params({"per_page": 1, "_fields": PROBE_FIELDS})
        try:
            response = await self.transport(url, params=params, timeout=self.timeout)
        except asyncio.TimeoutError:
            return "timeout"
        except (aiohttp.ClientError, OSError, StorySyncError) as exc:
            return f"{type(exc).__name__}: {exc}"
        if response.ok:
            return None
        return f"status {response.status}"

    async def is_available(self, *, force: bool = False) -> bool:
        if not force:
            cached = await self.last_record()
            if cached is not None:
                logger.info(
                    "using cached API status: %s",
                    "available" if cached.available else "unavailable",
                )
                return cached.available

        last_error: Optional[str] = None
        for base in self.bases:
            error = await self._probe(base)
            if error is None:
                record = AvailabilityRecord(True, self.store.clock(), source=base)
                await self.store.set(CacheFamily.AVAILABILITY, KEY_API_STATUS, record.to_dict())
                await self.reporter.report(STATUS_SUCCESS, "api_available", f"Content API reachable via {base}")
                logger.info("API status check: available (%s)", base)
                return True
            logger.warning("status check failed for %s: %s", base, error)
            last_error = error

        record = AvailabilityRecord(False, self.store.clock(), error=last_error)
        await self.store.set(CacheFamily.AVAILABILITY, KEY_API_STATUS, record.to_dict())
        await self.reporter.report(
            STATUS_WARNING,
            "api_unavailable",
            "Content API unavailable - using cached content",
            details=last_error,
        )
        logger.warning("all %d API bases failed the status check", len(self.bases))
        return False


__all__ = ["AvailabilityRecord", "AvailabilityTracker"]
