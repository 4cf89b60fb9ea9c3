"""YouTube connector: video details through the YouTube Data API v3."""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs, urlsplit

import requests

from connectors.api import request_json, video_details
from core.config import CraboConfig
from core.models import VideoDetails
from core.pipeline import VideoApiClient, VideoApiError

YOUTUBE_VIDEOS_ENDPOINT = "https://www.googleapis.com/youtube/v3/videos"

# https://developers.google.com/youtube/v3/docs/videos#snippet.thumbnails
THUMBNAIL_PREFERENCE = ("high", "standard", "maxres", "medium", "default")


def extract_youtube_video_id(url: str) -> str | None:
    """Video ID from ``youtu.be/<id>`` or ``youtube.com/...?v=<id>`` URLs."""
    parsed = urlsplit(url)
    host = (parsed.hostname or "").lower()

    if host == "youtu.be" or host.endswith(".youtu.be"):
        video_id = parsed.path.strip("/").split("/", 1)[0]
        return video_id or None

    if host == "youtube.com" or host.endswith(".youtube.com"):
        values = parse_qs(parsed.query).get("v")
        if values and values[0].strip():
            return values[0].strip()
    return None


def _pick_thumbnail(thumbnails: Any) -> str | None:
    if not isinstance(thumbnails, dict):
        return None
    for key in THUMBNAIL_PREFERENCE:
        entry = thumbnails.get(key)
        if isinstance(entry, dict) and entry.get("url"):
            return str(entry["url"])
    return None


class YouTubeApiClient(VideoApiClient):
    """Resolve YouTube watch and short links. Without an API key nothing is supported."""

    provider = "YouTube"

    def __init__(
        self,
        api_key: str | None,
        session: requests.Session | None = None,
        config: CraboConfig | None = None,
    ) -> None:
        """Initialize API credentials and HTTP settings."""
        self.config = config or CraboConfig()
        self.api_key = api_key
        self.session = session or requests.Session()

    def supports(self, url: str) -> bool:
        return bool(self.api_key) and extract_youtube_video_id(url) is not None

    def fetch_video(self, url: str) -> VideoDetails:
        video_id = extract_youtube_video_id(url)
        if video_id is None or not self.api_key:
            raise VideoApiError(f"not a resolvable YouTube URL: {url}")

        payload = request_json(
            self.session,
            YOUTUBE_VIDEOS_ENDPOINT,
            provider=self.provider,
            params={
                "id": video_id,
                "key": self.api_key,
                "part": "snippet",
                "fields": "items(id,snippet)",
            },
            timeout_seconds=self.config.fetch_timeout,
            user_agent=self.config.user_agent_string,
        )

        items = payload.get("items")
        if not isinstance(items, list) or not items:
            raise VideoApiError(f"YouTube video {video_id} not found")
        snippet = items[0].get("snippet") if isinstance(items[0], dict) else None
        if not isinstance(snippet, dict):
            raise VideoApiError(f"YouTube video {video_id} has no snippet")

        tags = snippet.get("tags") or []
        return video_details(
            self.provider,
            title=snippet.get("title"),
            description=snippet.get("description"),
            thumbnail_url=_pick_thumbnail(snippet.get("thumbnails")),
            tags=[f"#{tag}" for tag in tags if isinstance(tag, str) and tag],
        )
