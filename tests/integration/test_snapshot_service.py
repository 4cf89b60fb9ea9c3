"""Tests for the batch snapshot service: dedupe, caching, concurrency."""

from __future__ import annotations

import threading

import pytest
import requests

from core.config import CraboConfig
from core.errors import (
    DisallowedByRobots,
    ExtractionFailed,
    FetchFailed,
    SiteSuppressed,
)
from core.models import FetchedDoc, FetchLog, Snapshot, SnapshotSource
from core.pipeline import PageFetcher, SnapshotPipeline, SnapshotService
from fetcher.health import SiteHealthTracker
from fetcher.robots import RobotsPolicyResolver


class RecordingPipeline:
    """Pipeline stand-in returning canned snapshots or raising canned errors."""

    def __init__(self, config: CraboConfig, errors: dict[str, Exception] | None = None) -> None:
        self.config = config
        self.errors = errors or {}
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def produce_snapshot(self, url: str, request_id: str | None = None) -> Snapshot:
        with self._lock:
            self.calls.append(url)
        if url in self.errors:
            raise self.errors[url]
        return Snapshot(url=url, source=SnapshotSource.HTML_META, title=f"Title of {url}")


def _service(config: CraboConfig, clock, pipeline: RecordingPipeline) -> SnapshotService:
    return SnapshotService(pipeline, config=config, clock_fn=clock)


@pytest.mark.integration
def test_duplicate_urls_are_fetched_once_in_request_order(config, clock):
    pipeline = RecordingPipeline(config)
    service = _service(config, clock, pipeline)

    results = service.snap_many(
        [
            "https://example.com/b",
            "https://Example.com/a?utm_source=feed",
            "https://example.com/a",
            "https://example.com:443/b#top",
        ]
    )

    assert [result.url for result in results] == [
        "https://example.com/b",
        "https://Example.com/a?utm_source=feed",
    ]
    assert sorted(pipeline.calls) == ["https://Example.com/a?utm_source=feed", "https://example.com/b"]
    assert all(result.ok for result in results)


@pytest.mark.integration
def test_cached_snapshot_is_served_without_pipeline_run(config, clock):
    pipeline = RecordingPipeline(config)
    service = _service(config, clock, pipeline)

    first = service.snap("https://example.com/post")
    second = service.snap("https://EXAMPLE.com/post?utm_medium=social")

    assert first.cache_hit is False
    assert second.cache_hit is True
    assert second.url == "https://EXAMPLE.com/post?utm_medium=social"
    assert second.snapshot == first.snapshot
    assert pipeline.calls == ["https://example.com/post"]


@pytest.mark.integration
def test_bypass_cache_refreshes_entry(config, clock):
    pipeline = RecordingPipeline(config)
    service = _service(config, clock, pipeline)

    service.snap("https://example.com/post")
    refreshed = service.snap("https://example.com/post", bypass_cache=True)
    cached = service.snap("https://example.com/post")

    assert refreshed.cache_hit is False
    assert cached.cache_hit is True
    assert len(pipeline.calls) == 2


@pytest.mark.integration
def test_cache_entries_expire(clock):
    config = CraboConfig(snapshot_cache_ttl=60)
    pipeline = RecordingPipeline(config)
    service = _service(config, clock, pipeline)

    service.snap("https://example.com/post")
    clock.advance(61)
    again = service.snap("https://example.com/post")

    assert again.cache_hit is False
    assert len(pipeline.calls) == 2


@pytest.mark.integration
def test_extraction_failures_are_cached(config, clock):
    url = "https://example.com/file.pdf"
    pipeline = RecordingPipeline(config, errors={url: ExtractionFailed(url, "unsupported content type application/pdf")})
    service = _service(config, clock, pipeline)

    first = service.snap(url)
    second = service.snap(url)

    assert first.ok is False
    assert second.cache_hit is True
    assert isinstance(second.error, ExtractionFailed)
    assert second.to_response()["error"]["kind"] == "extraction_failed"
    assert pipeline.calls == [url]


@pytest.mark.integration
@pytest.mark.parametrize(
    "error",
    [
        FetchFailed("https://example.com/x", "TIMEOUT"),
        SiteSuppressed("https://example.com/x", "suppressed", retry_after=60.0),
        DisallowedByRobots("https://example.com/x", "disallowed"),
    ],
)
def test_transient_failures_are_not_cached(config, clock, error):
    url = "https://example.com/x"
    pipeline = RecordingPipeline(config, errors={url: error})
    service = _service(config, clock, pipeline)

    service.snap(url)
    second = service.snap(url)

    assert second.cache_hit is False
    assert second.error is error
    assert len(pipeline.calls) == 2


@pytest.mark.integration
def test_one_failure_does_not_affect_other_urls(config, clock):
    bad = "https://bad.example/"
    pipeline = RecordingPipeline(config, errors={bad: FetchFailed(bad, "CONNECTION_ERROR")})
    service = _service(config, clock, pipeline)

    results = service.snap_many(["https://good.example/", bad])

    assert results[0].ok is True
    assert results[1].ok is False
    assert results[1].to_response() == {
        "url": bad,
        "error": {"kind": "fetch_failed", "message": "CONNECTION_ERROR"},
    }


@pytest.mark.integration
def test_unexpected_pipeline_error_does_not_abort_batch(config, clock):
    """A collaborator raising a non-pipeline exception fails only its own URL."""

    class NoRobotsSession:
        def get(self, url: str, **_: object):
            raise requests.ConnectionError("no robots in tests")

    class FlakyFetcher(PageFetcher):
        def fetch(self, url: str, request_id: str | None = None):
            if "broken" in url:
                raise RuntimeError("parser state corrupted")
            body = b"<html><head><title>Fine</title></head></html>"
            doc = FetchedDoc(status_code=200, final_url=url, headers={"content-type": "text/html"}, body_bytes=body)
            return doc, FetchLog(url=url, status_code=200, request_id=request_id)

    health = SiteHealthTracker(config, clock_fn=clock, event_hook=lambda *_: None)
    pipeline = SnapshotPipeline(
        fetcher=FlakyFetcher(),
        robots=RobotsPolicyResolver(config, session=NoRobotsSession(), clock_fn=clock, event_hook=lambda *_: None),
        health=health,
        config=config,
        event_hook=lambda *_: None,
    )
    service = _service(config, clock, pipeline)

    results = service.snap_many(["https://a.example/", "https://broken.example/", "https://c.example/"])

    assert [result.ok for result in results] == [True, False, True]
    assert results[0].snapshot.title == "Fine"
    assert isinstance(results[1].error, ExtractionFailed)
    assert results[1].to_response()["error"]["kind"] == "extraction_failed"

@pytest.mark.integration
def test_misses_run_concurrently_up_to_bound(clock):
    """Pipeline runs overlap, and never exceed ``max_concurrency``."""
    config = CraboConfig(max_concurrency=3)
    barrier = threading.Barrier(3, timeout=5)
    state = {"active": 0, "peak": 0}
    lock = threading.Lock()

    class OverlappingPipeline(RecordingPipeline):
        def produce_snapshot(self, url: str, request_id: str | None = None) -> Snapshot:
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            try:
                barrier.wait()
                return super().produce_snapshot(url, request_id)
            finally:
                with lock:
                    state["active"] -= 1

    pipeline = OverlappingPipeline(config)
    service = _service(config, clock, pipeline)
    urls = [f"https://example.com/{index}" for index in range(9)]

    results = service.snap_many(urls)

    assert [result.url for result in results] == urls
    assert all(result.ok for result in results)
    assert state["peak"] == 3
