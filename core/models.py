"""
Core Pydantic models for crabo.

Design principles:
- Requests and snapshots are immutable once built
- Snapshots carry only preview-sized data (no page bodies)
- Deterministic serialization (snapshots are cached and compared)
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enums
# ============================================================================

class SnapshotSource(str, Enum):
    """Which path produced a snapshot."""
    HTML_META = "html"  # <meta> / <title> of a fetched page
    VIDEO_API = "video"  # Video hosting API response


class FetchErrorCode(str, Enum):
    """Why did a fetch fail?"""
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"  # Refused, reset, DNS
    SECURITY_BLOCKED = "SECURITY_BLOCKED"  # SSRF, IP blocklist, etc.
    FETCH_ERROR = "FETCH_ERROR"  # Any other transport error
    REDIRECT_LIMIT = "REDIRECT_LIMIT"
    HTTP_STATUS = "HTTP_STATUS"  # Non-2xx response


CONNECTION_LEVEL_ERRORS = frozenset({FetchErrorCode.TIMEOUT, FetchErrorCode.CONNECTION_ERROR})
"""Error codes that count against a site's health."""


class RobotsVerdict(str, Enum):
    """Answer of a robots check."""
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"


class HealthVerdict(str, Enum):
    """Answer of a site health check."""
    ALLOWED = "ALLOWED"
    SUPPRESSED = "SUPPRESSED"


class FetchOutcome(str, Enum):
    """Outcome of one pipeline run, as seen by the site health tracker."""
    SUCCESS = "SUCCESS"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    OTHER_ERROR = "OTHER_ERROR"


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


# ============================================================================
# Requests / Snapshots
# ============================================================================

class SnapshotRequest(BaseModel):
    """
    One inbound snapshot request.

    Created per call and discarded once the pipeline finishes.
    """
    model_config = ConfigDict(frozen=True)

    url: str
    requested_at: datetime = Field(default_factory=utc_now)
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class Snapshot(BaseModel):
    """
    Preview of a URL: title, description and image reference.

    When a page-level directive forbids snippets the content fields stay
    empty and ``suppressed_by_directive`` is set; this is a successful
    result, not an error.
    """
    model_config = ConfigDict(frozen=True)

    url: str
    source: SnapshotSource

    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    image_mime_type: Optional[str] = None
    site_name: Optional[str] = None

    tags: List[str] = Field(default_factory=list)

    # "guessed.social" when the page looks like a social network post/profile
    application_name: Optional[str] = None

    indexable: bool = True
    suppressed_by_directive: bool = False

    fetched_at: datetime = Field(default_factory=utc_now)

    def to_response(self) -> Dict[str, Any]:
        """Render the transport-agnostic response shape."""
        return {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "image": self.image_url,
            "image_mime_type": self.image_mime_type,
            "site_name": self.site_name,
            "source": self.source.value,
            "tags": list(self.tags),
            "application_name": self.application_name,
            "indexable": self.indexable,
            "suppressed_by_directive": self.suppressed_by_directive,
            "fetched_at": self.fetched_at.isoformat(),
        }


class VideoDetails(BaseModel):
    """Subset of a video hosting API response used for snapshots."""
    provider: str  # e.g., "YouTube", "BiliBili"

    title: Optional[str] = None
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


# ============================================================================
# Fetch / Network Logging
# ============================================================================

class FetchedDoc(BaseModel):
    """
    Response of one successful page fetch.

    ``truncated`` is set when the body was cut at the size cap.
    """
    status_code: int
    final_url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body_bytes: Optional[bytes] = None
    truncated: bool = False
    latency_ms: Optional[int] = None

    @property
    def content_type(self) -> str:
        """Lowercase media type without parameters."""
        raw = self.headers.get("content-type", "")
        return raw.split(";", 1)[0].strip().lower()


class FetchLog(BaseModel):
    """
    Log entry for a single fetch operation.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    url: str

    status_code: Optional[int] = None  # HTTP status
    latency_ms: Optional[int] = None  # Time to response
    bytes_received: Optional[int] = None

    error_code: Optional[FetchErrorCode] = None
    error_detail: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    request_id: Optional[str] = None

    @property
    def is_connection_error(self) -> bool:
        """True when the failure should count against site health."""
        return self.error_code in CONNECTION_LEVEL_ERRORS
