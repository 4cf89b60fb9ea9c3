"""Pipeline error hierarchy.

Every failed snapshot request surfaces as exactly one of these. The
``kind`` string is what callers see in structured responses.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for request-local snapshot failures."""

    kind = "pipeline_error"

    def __init__(self, url: str, message: str) -> None:
        super().__init__(message)
        self.url = url
        self.message = message

    def to_response(self) -> dict[str, object]:
        """Render the structured error response."""
        return {"url": self.url, "error": {"kind": self.kind, "message": self.message}}


class UrlRejected(PipelineError):
    """URL is malformed, not HTTP(S), or points to an ignored host."""

    kind = "url_rejected"


class SiteSuppressed(PipelineError):
    """Site is suppressed after repeated connection errors."""

    kind = "site_suppressed"

    def __init__(self, url: str, message: str, retry_after: float | None = None) -> None:
        super().__init__(url, message)
        self.retry_after = retry_after


class DisallowedByRobots(PipelineError):
    """robots.txt disallows this path for our agent."""

    kind = "disallowed_by_robots"


class FetchFailed(PipelineError):
    """Network-level failure (timeout, refused, reset)."""

    kind = "fetch_failed"


class ExtractionFailed(PipelineError):
    """Anything else: HTTP status, unsupported content, API response errors."""

    kind = "extraction_failed"
