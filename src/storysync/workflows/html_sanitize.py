"""HTML sanitization helpers for externally authored post markup.

This module is deterministic and network-agnostic. It reduces WordPress
markup to a small allow-list of text formatting tags so posts render as
text-only stories.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Mapping, Optional

import ftfy
from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag
from charset_normalizer import from_bytes

from .sync_config import (
    ALLOWED_TAGS,
    BLOCK_TAGS,
    BLOCKED_CLASS_TOKENS,
    CONTAINER_TAGS,
    LINE_BREAK_TAGS,
    MEDIA_TAGS,
    STRIP_SUBTREE_TAGS,
)

__all__ = [
    "decode_bytes_auto",
    "minimal_text_fix",
    "sanitize_html",
    "html_to_text",
]

_ZERO_WIDTH = {0x200B, 0x200C, 0x200D, 0x2060, 0xFEFF}
_REMOVE = {0x00, 0x0B, 0x0C}
_C1_TO_SPACE = {cp: " " for cp in range(0x80, 0xA0)}
_TRANSLATE = {**{cp: None for cp in _ZERO_WIDTH | _REMOVE}, **_C1_TO_SPACE, 0xA0: " "}

_VENDOR_BLOCK_RE = re.compile(r"<!--\s*/?wp:[\s\S]*?-->")
_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")
_SHORTCODE_RE = re.compile(r"\[/?[A-Za-z][\w-]*(?:\s[^\[\]]*)?/?\]")
_HSPACE_RE = re.compile(r"[^\S\n]+")
_MULTI_NEWLINE_RE = re.compile(r"\n{3,}")

_SUBTREE_CONTAINERS = CONTAINER_TAGS - {"span"}
# Passes can expose new matches (e.g. entity-encoded shortcodes); rerun until stable.
_MAX_ROUNDS = 8


def decode_bytes_auto(body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
    """Decode HTTP bytes using charset header hints with charset-normalizer fallback."""

    enc = None
    if headers:
        ct = headers.get("content-type", "") or headers.get("Content-Type", "")
        match = re.search(r"charset=([^\s;]+)", ct, re.I)
        if match:
            enc = match.group(1).strip(' "\'').lower()
    if enc:
        try:
            return body.decode(enc, errors="replace")
        except LookupError:
            pass
    result = from_bytes(body).best()
    if result is None:
        return body.decode("utf-8", errors="replace")
    return str(result)


def minimal_text_fix(text: str) -> str:
    """Fix mojibake and strip zero-width/control noise without collapsing structure."""

    if not text:
        return ""
    normalized = unicodedata.normalize("NFC", text)
    fixed = ftfy.fix_text(normalized, normalization="NFC", uncurl_quotes=False)
    return fixed.translate(_TRANSLATE)


def _strip_until_stable(pattern: re.Pattern, text: str) -> str:
    while True:
        stripped = pattern.sub("", text)
        if stripped == text:
            return text
        text = stripped


def _has_blocked_class(tag: Tag) -> bool:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    joined = " ".join(classes).lower()
    return any(token in joined for token in BLOCKED_CLASS_TOKENS)


def _normalize_whitespace(text: str) -> str:
    text = text.translate(_TRANSLATE).replace("\r\n", "\n").replace("\r", "\n")
    text = _HSPACE_RE.sub(" ", text)
    text = _MULTI_NEWLINE_RE.sub("\n\n", text)
    lines = [line.strip() for line in text.split("\n")]
    return "\n\n".join(line for line in lines if line)


def _sanitize_once(html: str) -> str:
    # 1) vendor block delimiters, then any leftover comments
    text = _VENDOR_BLOCK_RE.sub("", html)
    text = _strip_until_stable(_COMMENT_RE, text)
    # 2) shortcodes
    text = _strip_until_stable(_SHORTCODE_RE, text)

    soup = BeautifulSoup(text, "html.parser")
    for node in list(soup.descendants):
        if isinstance(node, PreformattedString):
            node.extract()

    # 3) non-content subtrees
    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        if tag.name in STRIP_SUBTREE_TAGS or _has_blocked_class(tag):
            tag.decompose()

    # 4) embedded media
    for tag in soup.find_all(list(MEDIA_TAGS)):
        if not tag.decomposed:
            tag.decompose()

    # 5) structural containers and line breaks
    for tag in soup.find_all(list(CONTAINER_TAGS | LINE_BREAK_TAGS)):
        if tag.name in LINE_BREAK_TAGS:
            tag.replace_with(NavigableString("\n"))
            continue
        if tag.name in _SUBTREE_CONTAINERS:
            tag.insert_before(NavigableString("\n"))
            tag.insert_after(NavigableString("\n"))
        tag.unwrap()

    # 6) allow-list
    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue
        tag.attrs = {}
        if tag.name in BLOCK_TAGS:
            tag.insert_before(NavigableString("\n"))
            tag.insert_after(NavigableString("\n"))

    # 7) entities were decoded by the parser; minimal formatter re-escapes &, <, >
    serialized = soup.decode(formatter="minimal")

    # 8) whitespace
    return _normalize_whitespace(serialized)


def sanitize_html(html: Optional[str]) -> str:
    """Reduce raw post markup to the restricted formatting subset.

    The result is a fixpoint: ``sanitize_html(sanitize_html(m)) == sanitize_html(m)``.
    """

    if not html:
        return ""
    current = _sanitize_once(html)
    for _ in range(_MAX_ROUNDS):
        following = _sanitize_once(current)
        if following == current:
            break
        current = following
    return current


def html_to_text(markup: Optional[str]) -> str:
    """Return the plain text of a markup fragment on a single line."""

    if not markup:
        return ""
    text = BeautifulSoup(markup, "html.parser").get_text(" ")
    return " ".join(text.translate(_TRANSLATE).split())
