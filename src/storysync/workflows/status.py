"""Best-effort diagnostic side channel (sync status and last error)."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from ..core.keys import KEY_LAST_ERROR, KEY_SYNC_STATUS
from .cache_store import CacheFamily, CacheStore

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_WARNING = "warning"
STATUS_ERROR = "error"


@dataclass(frozen=True)
class SyncStatus:
    status: str
    type: str
    message: str
    timestamp: float
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        if self.details is None:
            payload.pop("details")
        return payload


class StatusReporter:
    """Writes status records for external tooling; never read back by the orchestrator."""

    def __init__(self, store: CacheStore) -> None:
        self.store = store

    async def report(self, status: str, type_: str, message: str, *, details: Optional[str] = None) -> SyncStatus:
        record = SyncStatus(
            status=status,
            type=type_,
            message=message,
            timestamp=self.store.clock(),
            details=details,
        )
        await self.store.set(CacheFamily.DIAGNOSTICS, KEY_SYNC_STATUS, record.to_dict())
        return record

    async def record_error(self, source: str, message: str) -> None:
        logger.debug("recording last error from %s: %s", source, message)
        await self.store.set(
            CacheFamily.DIAGNOSTICS,
            KEY_LAST_ERROR,
            {"source": source, "message": message, "timestamp": self.store.clock()},
        )

    async def read(self) -> Dict[str, Any]:
        return {
            "sync_status": await self.store.get(CacheFamily.DIAGNOSTICS, KEY_SYNC_STATUS),
            "last_error": await self.store.get(CacheFamily.DIAGNOSTICS, KEY_LAST_ERROR),
        }


__all__ = ["STATUS_ERROR", "STATUS_SUCCESS", "STATUS_WARNING", "StatusReporter", "SyncStatus"]
