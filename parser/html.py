"""Streaming HTML head scanner: meta tags, title, and robots directives in one pass."""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser

from core.models import FetchedDoc
from parser.directives import DirectiveVerdict, MetaDirective, parse_meta_directive, resolve_directives

FEED_CHUNK_CHARS = 16_384

_CHARSET_HEADER_RE = re.compile(r"charset=[\"']?([a-zA-Z0-9._-]+)", flags=re.IGNORECASE)
_META_CHARSET_RE = re.compile(
    rb"<meta[^>]+charset=[\"']?([a-zA-Z0-9._-]+)",
    flags=re.IGNORECASE,
)
_SNIFF_BYTES = 4096


@dataclass(slots=True)
class PageMetadata:
    """What one scan of a document head produced."""

    meta_tags: dict[str, str] = field(default_factory=dict)
    html_title: str | None = None
    directives: list[MetaDirective] = field(default_factory=list)
    head_complete: bool = False

    @property
    def verdict(self) -> DirectiveVerdict:
        """Combined robots meta verdict for the scanning agent."""
        return resolve_directives(self.directives)


class _HeadMetadataParser(HTMLParser):
    """Capture meta/title/directives until the document head ends."""

    def __init__(self, agent_token: str) -> None:
        super().__init__(convert_charrefs=True)
        self.agent_token = agent_token
        self.result = PageMetadata()
        self._capture_title = False
        self._title_chunks: list[str] = []

    @property
    def done(self) -> bool:
        return self.result.head_complete

    def close(self) -> None:
        super().close()
        self._finish_title()

    def _finish_title(self) -> None:
        if self._title_chunks and self.result.html_title is None:
            title = " ".join("".join(self._title_chunks).split())
            self.result.html_title = title or None
        self._title_chunks = []
        self._capture_title = False

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if self.done:
            return
        tag_lower = tag.lower()

        if tag_lower == "meta":
            attrs_map = {k.lower(): (v or "").strip() for k, v in attrs}
            name = attrs_map.get("name", "")
            content = attrs_map.get("content", "")
            if name:
                self.result.directives.extend(
                    parse_meta_directive(name, content, self.agent_token)
                )
            key = (attrs_map.get("property") or name).lower()
            if key and content and key not in self.result.meta_tags:
                self.result.meta_tags[key] = content
            return

        if tag_lower == "title" and self.result.html_title is None:
            self._capture_title = True
            return

        if tag_lower == "body":
            self._finish_title()
            self.result.head_complete = True

    def handle_endtag(self, tag: str) -> None:
        if self.done:
            return
        tag_lower = tag.lower()
        if tag_lower == "title":
            self._finish_title()
        elif tag_lower == "head":
            self._finish_title()
            self.result.head_complete = True

    def handle_data(self, data: str) -> None:
        if self._capture_title and not self.done:
            self._title_chunks.append(data)


def scan_document(
    html_text: str,
    agent_token: str,
    chunk_chars: int = FEED_CHUNK_CHARS,
) -> PageMetadata:
    """
    Feed ``html_text`` incrementally and stop once the head is complete.

    Tags after ``</head>`` (or the first ``<body>``) are ignored even when
    they arrive in the same chunk, so results do not depend on chunking.
    """
    parser = _HeadMetadataParser(agent_token)
    for offset in range(0, len(html_text), chunk_chars):
        parser.feed(html_text[offset : offset + chunk_chars])
        if parser.done:
            break
    parser.close()
    return parser.result


def _lookup_encoding(name: str | None) -> str | None:
    if not name:
        return None
    try:
        return codecs.lookup(name).name
    except LookupError:
        return None


def detect_encoding(fetched: FetchedDoc) -> str:
    """Charset from Content-Type, else ``<meta charset>``, else UTF-8."""
    header_match = _CHARSET_HEADER_RE.search(fetched.headers.get("content-type", ""))
    encoding = _lookup_encoding(header_match.group(1) if header_match else None)
    if encoding:
        return encoding

    head = (fetched.body_bytes or b"")[:_SNIFF_BYTES]
    meta_match = _META_CHARSET_RE.search(head)
    encoding = _lookup_encoding(meta_match.group(1).decode("ascii") if meta_match else None)
    return encoding or "utf-8"


def decode_document(fetched: FetchedDoc) -> str:
    """Decode body bytes; a body cut at the size cap may end mid-character."""
    if not fetched.body_bytes:
        return ""
    return fetched.body_bytes.decode(detect_encoding(fetched), errors="replace")
