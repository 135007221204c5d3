"""Ordered fallback attempts.

Each attempt is a named zero-argument coroutine factory. An attempt succeeds
when it returns a value other than ``None``; raising or returning ``None``
moves on to the next one. Every outcome is kept so callers can log or report
the full chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

AttemptFactory = Callable[[], Awaitable[Any]]


@dataclass
class AttemptResult:
    name: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None


async def run_attempts(
    attempts: Sequence[Tuple[str, AttemptFactory]],
) -> Tuple[Optional[AttemptResult], List[AttemptResult]]:
    """Run ``attempts`` in order until one yields a value.

    Returns ``(winner, history)``; ``winner`` is ``None`` when all attempts
    came up empty.
    """

    history: List[AttemptResult] = []
    for name, factory in attempts:
        try:
            value = await factory()
        except Exception as exc:
            logger.warning("attempt %s failed: %s", name, exc)
            history.append(AttemptResult(name=name, error=f"{type(exc).__name__}: {exc}"))
            continue
        result = AttemptResult(name=name, value=value, error=None if value is not None else "empty")
        history.append(result)
        if result.ok:
            logger.debug("attempt %s succeeded", name)
            return result, history
        logger.info("attempt %s returned nothing", name)
    return None, history


__all__ = ["AttemptResult", "AttemptFactory", "run_attempts"]
