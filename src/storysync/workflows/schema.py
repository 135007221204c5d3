"""Validation and defensive repair of raw upstream post records.

``validate_post`` never raises. Each outcome carries a usable
:class:`ContentRecord`:

* ``Valid``     - every required field was present and well typed.
* ``Repaired``  - the record was a mapping but some fields had to be defaulted;
                  ``reasons`` lists what was filled in.
* ``Rejected``  - the input was not a mapping at all; ``record`` is a
                  placeholder built from nothing.
"""

from __future__ import annotations

import random
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..core.keys import (
    K_CATEGORIES,
    K_CONTENT,
    K_DATE,
    K_EXCERPT,
    K_ID,
    K_LINK,
    K_MODIFIED,
    K_RENDERED,
    K_SLUG,
    K_TAGS,
    K_TITLE,
)
from .post_utils import format_timestamp, get_excerpt, parse_timestamp
from .sync_config import PLACEHOLDER_CONTENT, PLACEHOLDER_TITLE


@dataclass(frozen=True)
class ContentRecord:
    """A validated post. ``id`` is the merge key; ``slug`` is never empty."""

    id: int
    date: datetime
    slug: str
    title: str
    content: str
    excerpt: str
    modified: Optional[datetime] = None
    link: Optional[str] = None
    categories: Tuple[int, ...] = ()
    tags: Tuple[int, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            K_ID: self.id,
            K_DATE: format_timestamp(self.date),
            K_SLUG: self.slug,
            K_TITLE: {K_RENDERED: self.title},
            K_CONTENT: {K_RENDERED: self.content},
            K_EXCERPT: {K_RENDERED: self.excerpt},
        }
        if self.modified is not None:
            payload[K_MODIFIED] = format_timestamp(self.modified)
        if self.link:
            payload[K_LINK] = self.link
        if self.categories:
            payload[K_CATEGORIES] = list(self.categories)
        if self.tags:
            payload[K_TAGS] = list(self.tags)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ContentRecord":
        """Rebuild a record previously written with :meth:`to_dict`."""
        return coerce_post(payload)


@dataclass(frozen=True)
class Valid:
    record: ContentRecord
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Repaired:
    record: ContentRecord
    reasons: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Rejected:
    record: ContentRecord
    reasons: Tuple[str, ...] = field(default_factory=tuple)


ValidationResult = Union[Valid, Repaired, Rejected]


def _rendered(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        inner = value.get(K_RENDERED)
        if isinstance(inner, str):
            return inner
    return None


def _coerce_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        return int(value.strip())
    return None


def _int_tuple(value: Any) -> Tuple[int, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(v for v in (_coerce_id(item) for item in value) if v is not None)


def _fallback_slug(post_id: Optional[int]) -> str:
    if post_id is not None:
        return f"post-{post_id}"
    return f"post-{int(time.time() * 1000)}-{secrets.token_hex(2)}"


def _validate_mapping(raw: Mapping[str, Any]) -> Tuple[ContentRecord, List[str]]:
    reasons: List[str] = []

    post_id = _coerce_id(raw.get(K_ID))
    upstream_id = post_id
    if post_id is None:
        post_id = random.randint(1, 9999)
        reasons.append("id_missing")
    elif not isinstance(raw.get(K_ID), int):
        reasons.append("id_coerced")

    date = parse_timestamp(raw.get(K_DATE))
    if date is None:
        date = datetime.now(timezone.utc)
        reasons.append("date_missing")

    slug = raw.get(K_SLUG)
    if not isinstance(slug, str) or not slug.strip():
        slug = _fallback_slug(upstream_id)
        reasons.append("slug_missing")
    else:
        slug = slug.strip()

    title = _rendered(raw.get(K_TITLE))
    if title is None or not title.strip():
        title = PLACEHOLDER_TITLE
        reasons.append("title_missing")
    else:
        title = title.strip()

    content = _rendered(raw.get(K_CONTENT))
    if content is None:
        content = PLACEHOLDER_CONTENT
        reasons.append("content_missing")

    # Excerpt is optional upstream; deriving it is not a repair.
    excerpt = _rendered(raw.get(K_EXCERPT))
    if excerpt is None or not excerpt.strip():
        excerpt = get_excerpt(content)

    link = raw.get(K_LINK)
    record = ContentRecord(
        id=post_id,
        date=date,
        slug=slug,
        title=title,
        content=content,
        excerpt=excerpt,
        modified=parse_timestamp(raw.get(K_MODIFIED)),
        link=link if isinstance(link, str) and link else None,
        categories=_int_tuple(raw.get(K_CATEGORIES)),
        tags=_int_tuple(raw.get(K_TAGS)),
    )
    return record, reasons


def validate_post(raw: Any) -> ValidationResult:
    """Validate one raw record; never raises."""

    if not isinstance(raw, Mapping):
        record, reasons = _validate_mapping({})
        return Rejected(record=record, reasons=(f"not_a_mapping:{type(raw).__name__}", *reasons))
    record, reasons = _validate_mapping(raw)
    if reasons:
        return Repaired(record=record, reasons=tuple(reasons))
    return Valid(record=record)


def coerce_post(raw: Any) -> ContentRecord:
    """Return a usable record for any input, repairing or synthesizing as needed."""

    return validate_post(raw).record


__all__ = [
    "ContentRecord",
    "Valid",
    "Repaired",
    "Rejected",
    "ValidationResult",
    "validate_post",
    "coerce_post",
]
