"""Text cleaning for snapshot fields that end up rendered in other pages."""

from __future__ import annotations

import html as html_lib
import re

_TAG_RE = re.compile(r"<[^>]*>")
_BREAK_TAG_RE = re.compile(r"<\s*(br|/p|/div|/li)\s*/?\s*>", flags=re.IGNORECASE)

TITLE_MAX_CHARS = 300
DESCRIPTION_MAX_CHARS = 1500


def _normalize_whitespace(value: str, keep_lines: bool) -> str:
    """Collapse whitespace, optionally preserving line breaks."""
    if not keep_lines:
        return " ".join(value.split())
    normalized_lines: list[str] = []
    for line in value.splitlines():
        compact = " ".join(line.split())
        if compact:
            normalized_lines.append(compact)
    return "\n".join(normalized_lines)


def _truncate_with_ellipsis(text: str, max_chars: int) -> str:
    """Truncate string safely on word boundary and append ellipsis."""
    if len(text) <= max_chars:
        return text
    trimmed = text[:max_chars]
    if not trimmed.endswith(" ") and " " in trimmed:
        trimmed = trimmed.rsplit(" ", 1)[0]
    return trimmed.rstrip() + "…"


def clean_text(
    value: str | None,
    max_chars: int = DESCRIPTION_MAX_CHARS,
    keep_lines: bool = False,
) -> str | None:
    """Strip markup and entities from ``value``; empty results become None."""
    if value is None:
        return None
    text = _BREAK_TAG_RE.sub("\n", value)
    text = _TAG_RE.sub("", text)
    text = html_lib.unescape(text)
    text = _normalize_whitespace(text, keep_lines=keep_lines)
    if not text:
        return None
    return _truncate_with_ellipsis(text, max_chars)
