"""Exception types raised inside the synchronization workflow."""

from __future__ import annotations

from typing import Optional


class StorySyncError(Exception):
    """Base class for storysync errors."""


class SourceError(StorySyncError):
    """A single content source failed; the caller should move to the next tier."""

    def __init__(self, source: str, reason: str, *, status: Optional[int] = None) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason
        self.status = status


class StorageError(StorySyncError):
    """Persistent storage backend could not complete a read or write."""


class PostNotFoundError(StorySyncError):
    """No tier produced a post for the requested slug."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"Post not found with slug: {slug}")
        self.slug = slug
