"""Thin aiohttp transport shared by the availability tracker and orchestrator."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import aiohttp

from ..core.keys import HDR_CONTENT_TYPE
from .html_sanitize import decode_bytes_auto
from .sync_config import HDR_ACCEPT, JSON_MIME, USER_AGENT

logger = logging.getLogger(__name__)

QueryParams = Sequence[Tuple[str, str]]


@dataclass
class RawResponse:
    """Container for a single HTTP response."""

    url: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.headers.get(HDR_CONTENT_TYPE, "").split(";")[0].strip().lower()

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def json(self) -> Any:
        return json.loads(decode_bytes_auto(self.body, self.headers))


Transport = Callable[..., Awaitable[RawResponse]]


class AiohttpTransport:
    """Callable transport: ``await transport(url, params=..., timeout=...)``.

    One ``ClientSession`` is opened lazily and reused until :meth:`close`.
    """

    def __init__(self, *, user_agent: str = USER_AGENT, headers: Optional[Mapping[str, str]] = None) -> None:
        self._headers = {"User-Agent": user_agent, HDR_ACCEPT: JSON_MIME, **dict(headers or {})}
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._headers)
        return self._session

    async def __call__(
        self,
        url: str,
        *,
        params: Optional[QueryParams] = None,
        timeout: float,
    ) -> RawResponse:
        session = self._get_session()
        async with session.get(
            url,
            params=list(params or ()),
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            body = await resp.read()
            headers = {key.lower(): value for key, value in resp.headers.items()}
            return RawResponse(url=str(resp.url), status=resp.status, headers=headers, body=body)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def build_params(pairs: Mapping[str, Any]) -> List[Tuple[str, str]]:
    """Flatten a mapping into ordered query pairs, skipping empty values."""

    params: List[Tuple[str, str]] = []
    for key, value in pairs.items():
        if value is None or value == "" or value == () or value == []:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        params.append((key, str(value)))
    return params


__all__ = ["AiohttpTransport", "RawResponse", "Transport", "build_params"]
