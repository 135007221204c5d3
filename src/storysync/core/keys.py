"""Shared schema keys to avoid magic strings across storysync modules."""

from __future__ import annotations

# Raw upstream post keys
K_ID = "id"
K_DATE = "date"
K_MODIFIED = "modified"
K_SLUG = "slug"
K_LINK = "link"
K_TITLE = "title"
K_CONTENT = "content"
K_EXCERPT = "excerpt"
K_RENDERED = "rendered"
K_CATEGORIES = "categories"
K_TAGS = "tags"

# Internal mirror keys
K_POSTS = "posts"
K_HAS_MORE = "hasMore"
K_CREATED_AT = "createdAt"

# Cache entry envelope
K_FAMILY = "family"
K_WRITTEN_AT = "written_at"
K_PAYLOAD = "payload"

# Storage keys (within a family)
KEY_API_STATUS = "api_status"
KEY_SYNC_STATUS = "sync_status"
KEY_LAST_ERROR = "last_error"
KEY_LOCAL_POSTS = "local_posts"

# Response headers
HDR_TOTAL_PAGES = "x-wp-totalpages"
HDR_TOTAL = "x-wp-total"
HDR_CONTENT_TYPE = "content-type"
