"""Content classification and snapshot extraction (HTML meta path + video API mapping)."""

from __future__ import annotations

import mimetypes
from enum import Enum
from typing import Mapping
from urllib.parse import urljoin, urlsplit

from core.config import HTML_CONTENT_TYPES, CraboConfig
from core.errors import ExtractionFailed
from core.models import FetchedDoc, Snapshot, SnapshotSource, VideoDetails
from parser.html import PageMetadata, decode_document, scan_document
from quality.text import DESCRIPTION_MAX_CHARS, TITLE_MAX_CHARS, clean_text
from quality.urlnorm import host_matches

GUESSED_SOCIAL = "guessed.social"

_TITLE_KEYS = ("og:title", "twitter:title")
_DESCRIPTION_KEYS = ("og:description", "twitter:description", "description")
_IMAGE_KEYS = ("og:image", "twitter:image")

_SOCIAL_PROFILE_KEYS = (
    # Mastodon-like
    "profile:username",
    "og:profile:username",
    # Misskey forks
    "misskey:user-username",
    "misskey:user-id",
    "misskey:note-id",
)
_SOCIAL_APPLICATIONS = frozenset(
    {"misskey", "sharkey", "foundkey", "iceshrimp", "catodon", "firefish"}
)


class ContentKind(str, Enum):
    """Snapshot path chosen for a URL."""
    VIDEO_API = "VIDEO_API"
    GENERIC_HTML = "GENERIC_HTML"


class ContentClassifier:
    """Route URLs by host against the configured video host allowlist."""

    def __init__(self, config: CraboConfig | None = None) -> None:
        self.config = config or CraboConfig()

    def classify(self, url: str) -> ContentKind:
        host = urlsplit(url).netloc
        if host and host_matches(host, self.config.video_host_allowlist):
            return ContentKind.VIDEO_API
        return ContentKind.GENERIC_HTML


def _first_value(meta_tags: Mapping[str, str], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = meta_tags.get(key)
        if value and value.strip():
            return value
    return None


def guess_social(meta_tags: Mapping[str, str]) -> str | None:
    """
    Return ``"guessed.social"`` when meta tags look like a social network page.

    Profile hints come from Mastodon and Misskey-family instances; only the
    Misskey family sets a recognizable ``application-name``.
    """
    if any(key in meta_tags for key in _SOCIAL_PROFILE_KEYS):
        return GUESSED_SOCIAL
    application = (meta_tags.get("application-name") or "").strip().lower()
    if application in _SOCIAL_APPLICATIONS:
        return GUESSED_SOCIAL
    return None


def resolve_image_url(page_url: str, image_ref: str | None) -> str | None:
    """Absolute HTTP(S) image URL, resolving relative references against the page."""
    if not image_ref:
        return None
    resolved = urljoin(page_url, image_ref.strip())
    if urlsplit(resolved).scheme.lower() not in {"http", "https"}:
        return None
    return resolved


def guess_image_mime_type(image_url: str | None) -> str | None:
    """Guess media type from the image URL path extension."""
    if not image_url:
        return None
    mime_type, _ = mimetypes.guess_type(urlsplit(image_url).path)
    return mime_type


def is_html_response(fetched: FetchedDoc) -> bool:
    """HTML and XHTML are parsed; a missing content-type is given the benefit of the doubt."""
    content_type = fetched.content_type
    return not content_type or content_type in HTML_CONTENT_TYPES


def metadata_to_snapshot(url: str, metadata: PageMetadata) -> Snapshot:
    """
    Build a snapshot from one head scan.

    Field priority:
    - title: og:title, twitter:title, <title>
    - description: og:description, twitter:description, meta description
    - image: og:image, twitter:image (resolved against ``url``)

    A ``nosnippet``/``none`` directive for the agent empties every content
    field; ``noindex`` keeps the fields but marks the snapshot non-indexable.
    """
    verdict = metadata.verdict
    if verdict.blocks_snippet:
        return Snapshot(
            url=url,
            source=SnapshotSource.HTML_META,
            indexable=False,
            suppressed_by_directive=True,
        )

    meta_tags = metadata.meta_tags
    title = clean_text(
        _first_value(meta_tags, _TITLE_KEYS) or metadata.html_title,
        max_chars=TITLE_MAX_CHARS,
    )
    description = clean_text(
        _first_value(meta_tags, _DESCRIPTION_KEYS),
        max_chars=DESCRIPTION_MAX_CHARS,
        keep_lines=True,
    )
    image_url = resolve_image_url(url, _first_value(meta_tags, _IMAGE_KEYS))
    application_name = guess_social(meta_tags)

    return Snapshot(
        url=url,
        source=SnapshotSource.HTML_META,
        title=title,
        description=description,
        image_url=image_url,
        image_mime_type=guess_image_mime_type(image_url),
        site_name=clean_text(meta_tags.get("og:site_name"), max_chars=TITLE_MAX_CHARS),
        application_name=application_name,
        indexable=not verdict.noindex and application_name is None,
    )


def extract_html_snapshot(url: str, fetched: FetchedDoc, agent_token: str) -> Snapshot:
    """
    Scan a fetched document and build its snapshot.

    Raises:
        ExtractionFailed: The response is not an HTML document.
    """
    if not is_html_response(fetched):
        raise ExtractionFailed(url, f"unsupported content type {fetched.content_type}")
    metadata = scan_document(decode_document(fetched), agent_token)
    return metadata_to_snapshot(url, metadata)


def video_details_to_snapshot(url: str, details: VideoDetails) -> Snapshot:
    """Map a video API response directly into a snapshot."""
    title = clean_text(details.title, max_chars=TITLE_MAX_CHARS)
    description = clean_text(details.description, keep_lines=True)
    if title is None and description is None and details.thumbnail_url is None:
        raise ExtractionFailed(url, f"{details.provider} returned no usable fields")

    return Snapshot(
        url=url,
        source=SnapshotSource.VIDEO_API,
        title=title,
        description=description,
        image_url=details.thumbnail_url,
        image_mime_type=guess_image_mime_type(details.thumbnail_url),
        site_name=details.provider,
        tags=list(details.tags),
    )
