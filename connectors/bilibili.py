"""BiliBili connector: video details through the public web-interface endpoint."""

from __future__ import annotations

from urllib.parse import urlsplit

import requests

from connectors.api import request_json, video_details
from core.config import CraboConfig
from core.models import VideoDetails
from core.pipeline import VideoApiClient, VideoApiError

BILIBILI_VIEW_ENDPOINT = "https://api.bilibili.com/x/web-interface/view"
SHORT_LINK_BASE = "https://b23.tv/"
_VIDEO_PATH_PREFIX = "/video/"


def _is_short_host(host: str) -> bool:
    return host == "b23.tv" or host.endswith(".b23.tv")


def _video_id_from_path(path: str) -> str | None:
    if not path.startswith(_VIDEO_PATH_PREFIX):
        return None
    video_id = path[len(_VIDEO_PATH_PREFIX):].strip("/").split("/", 1)[0]
    return video_id or None


def extract_bilibili_video_id(url: str) -> str | None:
    """
    BV id from ``bilibili.com/video/<id>``; for ``b23.tv`` the short code.

    Short codes do not start with ``BV`` and must be resolved first.
    """
    parsed = urlsplit(url)
    host = (parsed.hostname or "").lower()

    if _is_short_host(host):
        code = parsed.path.strip("/")
        return code or None

    if host == "bilibili.com" or host.endswith(".bilibili.com"):
        return _video_id_from_path(parsed.path)
    return None


class BiliBiliApiClient(VideoApiClient):
    """Resolve BiliBili video pages and b23.tv short links."""

    provider = "BiliBili"

    def __init__(
        self,
        session: requests.Session | None = None,
        config: CraboConfig | None = None,
    ) -> None:
        """Initialize HTTP session and settings."""
        self.config = config or CraboConfig()
        self.session = session or requests.Session()

    def supports(self, url: str) -> bool:
        return extract_bilibili_video_id(url) is not None

    def resolve_short_code(self, code: str) -> str:
        """
        Follow one b23.tv redirect by hand and read the BV id from ``Location``.

        The short code is returned unchanged when the redirect cannot be read.
        """
        try:
            response = self.session.head(
                SHORT_LINK_BASE + code,
                headers={"User-Agent": self.config.user_agent_string},
                allow_redirects=False,
                timeout=self.config.fetch_timeout,
            )
        except requests.RequestException as exc:
            raise VideoApiError(f"b23.tv lookup failed: {type(exc).__name__}") from exc

        location = response.headers.get("Location") or response.headers.get("location")
        if not location:
            return code
        return _video_id_from_path(urlsplit(location).path) or code

    def fetch_video(self, url: str) -> VideoDetails:
        video_id = extract_bilibili_video_id(url)
        if video_id is None:
            raise VideoApiError(f"not a resolvable BiliBili URL: {url}")
        if not video_id.startswith("BV"):
            video_id = self.resolve_short_code(video_id)

        payload = request_json(
            self.session,
            BILIBILI_VIEW_ENDPOINT,
            provider=self.provider,
            params={"bvid": video_id},
            timeout_seconds=self.config.fetch_timeout,
            user_agent=self.config.user_agent_string,
        )

        code = payload.get("code", 0)
        data = payload.get("data")
        if code != 0 or not isinstance(data, dict):
            raise VideoApiError(
                f"BiliBili video {video_id} unavailable: {payload.get('message') or code}"
            )

        return video_details(
            self.provider,
            title=data.get("title"),
            description=data.get("desc"),
            thumbnail_url=data.get("pic") or None,
        )
