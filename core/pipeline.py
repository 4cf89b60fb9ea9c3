"""
Snapshot pipeline: collaborator interfaces, orchestrator, and batch service.

Architecture:
health check → robots check → classify → (video API | page fetch → scan → extract)

This is intentionally minimal and prescriptive:
- Collaborators never retry; a new top-level request is the only retry
- Transport failures are returned (page fetch) or raised as one exception
  type (video API), never swallowed
- Each failure maps to one health outcome and one PipelineError
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence
from urllib.parse import urlsplit, urlunsplit

from core import addresses
from core.cache import PolicyCache
from core.config import ALLOWED_PROTOCOLS, CraboConfig
from core.errors import (
    DisallowedByRobots,
    ExtractionFailed,
    FetchFailed,
    PipelineError,
    SiteSuppressed,
    UrlRejected,
)
from core.models import (
    FetchedDoc,
    FetchLog,
    FetchOutcome,
    HealthVerdict,
    RobotsVerdict,
    Snapshot,
    SnapshotRequest,
    VideoDetails,
)
from core.structured_logging import EventHook, default_event_hook
from extractor.snapshot import (
    ContentClassifier,
    ContentKind,
    extract_html_snapshot,
    video_details_to_snapshot,
)
from quality.urlnorm import canonicalize_url, host_matches, strip_campaign_parameters


# ============================================================================
# Stage Interfaces
# ============================================================================

class VideoApiError(Exception):
    """Raised when a video hosting API cannot produce details for a URL."""


class PageFetcher(ABC):
    """
    Fetch stage: given a URL, download its document with safety constraints.

    Responsibilities:
    - Bounded timeout and body size (oversized bodies are truncated)
    - Security: IP blocklist, protocol whitelist, redirect limits
    - Observability: log all fetches (success + error)
    """

    @abstractmethod
    def fetch(self, url: str, request_id: Optional[str] = None) -> tuple[Optional[FetchedDoc], FetchLog]:
        """
        Fetch a single URL.

        Args:
            url: URL to fetch
            request_id: Request ID for log correlation

        Returns:
            (FetchedDoc, FetchLog entry)
            - If fetch fails, FetchedDoc is None and FetchLog.error_code is set
            - Non-2xx responses are failures with error_code HTTP_STATUS

        Always returns a FetchLog (never raises; errors logged)
        """
        pass


class VideoApiClient(ABC):
    """
    Video stage: resolve a video page URL through the host's API.

    Responsibilities:
    - Recognize URLs it can resolve (video ID extraction)
    - Call the API with a bounded timeout
    - Map the response to VideoDetails
    """

    provider: str = "video"

    @abstractmethod
    def supports(self, url: str) -> bool:
        """Return True if a video ID can be extracted from ``url``."""
        pass

    @abstractmethod
    def fetch_video(self, url: str) -> VideoDetails:
        """
        Fetch details of the video ``url`` points to.

        Raises:
            VideoApiError: Any transport, status, or schema failure
        """
        pass


class RobotsGate(Protocol):
    """Robots.txt check consulted before any fetch."""

    def is_allowed(self, host: str, path: str, agent_token: str, scheme: str = "https") -> RobotsVerdict:
        ...


class HealthGate(Protocol):
    """Per-host circuit breaker fed with one outcome per fetch."""

    def check(self, host: str) -> HealthVerdict:
        ...

    def retry_after(self, host: str) -> float | None:
        ...

    def record_outcome(self, host: str, outcome: FetchOutcome) -> None:
        ...


# ============================================================================
# Pipeline Orchestrator
# ============================================================================

class SnapshotPipeline:
    """
    Main orchestrator: one compliance-gated snapshot per call.

    Usage:
        pipeline = SnapshotPipeline(fetcher, robots, health, video_clients=[youtube])
        snapshot = pipeline.produce_snapshot("https://example.com/post")

    Every failure is raised as exactly one PipelineError subclass, and
    every run that reaches a fetch records exactly one outcome against
    the site health tracker.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        robots: RobotsGate,
        health: HealthGate,
        classifier: ContentClassifier | None = None,
        video_clients: Sequence[VideoApiClient] = (),
        config: CraboConfig | None = None,
        event_hook: EventHook | None = None,
    ):
        """Initialize collaborators; robots and health are shared across pipelines."""
        self.config = config or CraboConfig()
        self.fetcher = fetcher
        self.robots = robots
        self.health = health
        self.classifier = classifier or ContentClassifier(self.config)
        self.video_clients = list(video_clients)
        self._event_hook = event_hook or default_event_hook

    def _emit(self, event_type: str, request: SnapshotRequest, **payload: Any) -> None:
        self._event_hook(
            event_type,
            {"request_id": request.request_id, "component": "pipeline", **payload},
        )

    def _target(self, url: str) -> tuple[str, str, str, str]:
        """Validate ``url`` and return ``(url, scheme, host, path)`` with tracking params dropped."""
        try:
            parsed = urlsplit(url.strip())
            port = parsed.port
        except ValueError as exc:
            raise UrlRejected(url, f"malformed URL: {exc}") from exc

        scheme = parsed.scheme.lower()
        if scheme not in ALLOWED_PROTOCOLS:
            raise UrlRejected(url, f"unsupported scheme {scheme or '(none)'}")
        hostname = (parsed.hostname or "").lower()
        if not hostname:
            raise UrlRejected(url, "URL has no host")
        if host_matches(hostname, self.config.ignored_hosts):
            raise UrlRejected(url, f"host {hostname} is ignored")
        if not addresses.is_valid_host_name(hostname):
            raise UrlRejected(url, f"invalid host name {hostname}")
        if addresses.host_is_blocked(hostname):
            raise UrlRejected(url, f"host {hostname} resolves to a blocked address range")

        host = f"{hostname}:{port}" if port else hostname
        target = strip_campaign_parameters(urlunsplit(
            (scheme, parsed.netloc, parsed.path or "/", parsed.query, "")
        ))
        path_parts = urlsplit(target)
        path = path_parts.path or "/"
        if path_parts.query:
            path = f"{path}?{path_parts.query}"
        return target, scheme, host, path

    def _video_client_for(self, url: str) -> VideoApiClient | None:
        for client in self.video_clients:
            if client.supports(url):
                return client
        return None

    def produce_snapshot(self, url: str, request_id: str | None = None) -> Snapshot:
        """
        Produce a snapshot for ``url``.

        Stages executed in order:
        1. validate URL and host address, drop campaign tracking parameters
        2. site health check (no network attempt while suppressed)
        3. robots.txt check for the configured agent token
        4. classify → video API client or page fetch + head scan
        5. record the outcome against site health

        Raises:
            UrlRejected, SiteSuppressed, DisallowedByRobots, FetchFailed,
            ExtractionFailed
        """
        request = (
            SnapshotRequest(url=url, request_id=request_id)
            if request_id
            else SnapshotRequest(url=url)
        )
        try:
            snapshot = self._run(request)
        except PipelineError as exc:
            self._emit(
                "snapshot_failed",
                request,
                url=url,
                error_kind=exc.kind,
                error=exc.message,
            )
            raise

        self._emit(
            "snapshot_completed",
            request,
            url=snapshot.url,
            source=snapshot.source.value,
            suppressed_by_directive=snapshot.suppressed_by_directive,
            indexable=snapshot.indexable,
        )
        return snapshot

    def _run(self, request: SnapshotRequest) -> Snapshot:
        url, scheme, host, path = self._target(request.url)
        try:
            return self._gate_and_snap(request, url, scheme, host, path)
        except PipelineError:
            raise
        except Exception as exc:
            self.health.record_outcome(host, FetchOutcome.OTHER_ERROR)
            raise ExtractionFailed(url, f"unexpected {type(exc).__name__}: {exc}") from exc

    def _gate_and_snap(
        self,
        request: SnapshotRequest,
        url: str,
        scheme: str,
        host: str,
        path: str,
    ) -> Snapshot:
        agent_token = self.config.agent_token

        if self.health.check(host) is HealthVerdict.SUPPRESSED:
            raise SiteSuppressed(
                url,
                f"{host} is suppressed after repeated connection errors",
                retry_after=self.health.retry_after(host),
            )

        verdict = self.robots.is_allowed(host, path, agent_token, scheme=scheme)
        if verdict is RobotsVerdict.DENIED:
            raise DisallowedByRobots(url, f"robots.txt disallows {path} for {agent_token}")

        if self.classifier.classify(url) is ContentKind.VIDEO_API:
            client = self._video_client_for(url)
            if client is not None:
                return self._snap_video(url, host, client)
        return self._snap_page(url, host, agent_token, request.request_id)

    def _snap_video(self, url: str, host: str, client: VideoApiClient) -> Snapshot:
        try:
            snapshot = video_details_to_snapshot(url, client.fetch_video(url))
        except VideoApiError as exc:
            self.health.record_outcome(host, FetchOutcome.OTHER_ERROR)
            raise ExtractionFailed(url, str(exc)) from exc
        except ExtractionFailed:
            self.health.record_outcome(host, FetchOutcome.OTHER_ERROR)
            raise
        self.health.record_outcome(host, FetchOutcome.SUCCESS)
        return snapshot

    def _snap_page(self, url: str, host: str, agent_token: str, request_id: str) -> Snapshot:
        fetched, fetch_log = self.fetcher.fetch(url, request_id)
        if fetched is None or fetch_log.error_code is not None:
            detail = fetch_log.error_detail or (
                fetch_log.error_code.value if fetch_log.error_code else "fetch failed"
            )
            if fetch_log.is_connection_error:
                self.health.record_outcome(host, FetchOutcome.CONNECTION_ERROR)
                raise FetchFailed(url, detail)
            self.health.record_outcome(host, FetchOutcome.OTHER_ERROR)
            raise ExtractionFailed(url, detail)

        try:
            snapshot = extract_html_snapshot(url, fetched, agent_token)
        except ExtractionFailed:
            self.health.record_outcome(host, FetchOutcome.OTHER_ERROR)
            raise
        self.health.record_outcome(host, FetchOutcome.SUCCESS)
        return snapshot


# ============================================================================
# Snapshot Service
# ============================================================================

@dataclass(slots=True)
class SnapshotResult:
    """Outcome for one requested URL: a snapshot or the error that replaced it."""

    url: str
    snapshot: Snapshot | None = None
    error: PipelineError | None = None
    cache_hit: bool = False

    @property
    def ok(self) -> bool:
        return self.snapshot is not None

    def to_response(self) -> dict[str, Any]:
        if self.snapshot is not None:
            return self.snapshot.to_response()
        if self.error is not None:
            return self.error.to_response()
        return {"url": self.url, "error": None}


CACHEABLE_ERRORS: tuple[type[PipelineError], ...] = (ExtractionFailed,)
"""Negative results kept in the snapshot cache; transient failures are retried."""


class SnapshotService:
    """
    Batch front of the pipeline.

    Deduplicates requested URLs, answers from the snapshot cache unless
    bypassed, and runs misses concurrently on a bounded thread pool.
    """

    def __init__(
        self,
        pipeline: SnapshotPipeline,
        config: CraboConfig | None = None,
        cache: PolicyCache[SnapshotResult] | None = None,
        clock_fn: Callable[[], float] | None = None,
    ):
        """Initialize the snapshot cache and concurrency bound from config."""
        self.pipeline = pipeline
        self.config = config or pipeline.config
        self.cache: PolicyCache[SnapshotResult] = cache if cache is not None else PolicyCache(
            self.config.snapshot_cache_capacity,
            clock_fn=clock_fn or time.monotonic,
        )

    def _produce(self, url: str, key: str) -> SnapshotResult:
        try:
            result = SnapshotResult(url=url, snapshot=self.pipeline.produce_snapshot(url))
        except PipelineError as exc:
            result = SnapshotResult(url=url, error=exc)

        if result.ok or isinstance(result.error, CACHEABLE_ERRORS):
            self.cache.put(key, result, self.config.snapshot_cache_ttl)
        return result

    def snap(self, url: str, bypass_cache: bool = False) -> SnapshotResult:
        """Snapshot a single URL."""
        return self.snap_many([url], bypass_cache=bypass_cache)[0]

    def snap_many(self, urls: Iterable[str], bypass_cache: bool = False) -> list[SnapshotResult]:
        """
        Snapshot every unique URL in ``urls``.

        Returns one result per unique URL (first spelling wins), in
        request order. ``bypass_cache`` skips cache reads but still
        refreshes the cache with new results.
        """
        unique: dict[str, str] = {}
        for url in urls:
            key = canonicalize_url(url)
            if key not in unique:
                unique[key] = url

        results: dict[str, SnapshotResult] = {}
        misses: list[tuple[str, str]] = []
        for key, url in unique.items():
            cached = None if bypass_cache else self.cache.get(key)
            if cached is not None:
                results[key] = replace(cached, url=url, cache_hit=True)
            else:
                misses.append((key, url))

        if misses:
            workers = min(self.config.max_concurrency, len(misses))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="crabo-snap") as pool:
                futures = {pool.submit(self._produce, url, key): key for key, url in misses}
                for future in as_completed(futures):
                    results[futures[future]] = future.result()

        return [results[key] for key in unique]
