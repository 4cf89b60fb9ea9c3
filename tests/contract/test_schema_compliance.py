"""
Contract tests for schema compliance.

Ensures that every response the pipeline renders matches the published
schemas (snapshot_response.schema.json, error_response.schema.json).
These tests are run on CI and must pass before any feature work.
"""

import json
from pathlib import Path

import jsonschema
import pytest

from core.errors import (
    DisallowedByRobots,
    ExtractionFailed,
    FetchFailed,
    SiteSuppressed,
    UrlRejected,
)
from core.models import FetchedDoc, Snapshot, SnapshotSource, VideoDetails
from core.pipeline import SnapshotResult
from extractor.snapshot import extract_html_snapshot, video_details_to_snapshot


# Load schemas
SCHEMAS_DIR = Path(__file__).parent.parent.parent / "schemas"
SNAPSHOT_SCHEMA = json.loads((SCHEMAS_DIR / "snapshot_response.schema.json").read_text())
ERROR_SCHEMA = json.loads((SCHEMAS_DIR / "error_response.schema.json").read_text())


def _html(head: str) -> FetchedDoc:
    return FetchedDoc(
        status_code=200,
        final_url="https://example.com/post",
        headers={"content-type": "text/html"},
        body_bytes=f"<html><head>{head}</head><body></body></html>".encode("utf-8"),
    )


def _roundtrip(response: dict) -> dict:
    """Serialize like the CLI does, so only JSON-native values reach the schema."""
    return json.loads(json.dumps(response, ensure_ascii=False, sort_keys=True))


# ============================================================================
# Snapshot Schema Tests
# ============================================================================

@pytest.mark.contract
class TestSnapshotSchema:
    """Snapshots must conform to snapshot_response.schema.json."""

    @pytest.mark.parametrize(
        "head",
        [
            '<meta property="og:title" content="Example">',
            (
                '<meta property="og:title" content="Example">'
                '<meta property="og:description" content="Line one">'
                '<meta property="og:image" content="/cover.jpg">'
                '<meta property="og:site_name" content="Example Site">'
            ),
            '<meta name="robots" content="nosnippet"><meta property="og:title" content="Hidden">',
            '<meta name="application-name" content="Mastodon"><title>@alice</title>',
            "",
        ],
    )
    def test_html_snapshots_against_schema(self, head: str):
        snapshot = extract_html_snapshot("https://example.com/post", _html(head), "fedineko-crabo")
        try:
            jsonschema.validate(_roundtrip(snapshot.to_response()), SNAPSHOT_SCHEMA)
        except jsonschema.ValidationError as e:
            pytest.fail(f"Snapshot schema validation failed: {e.message}")

    def test_video_snapshot_against_schema(self):
        snapshot = video_details_to_snapshot(
            "https://youtu.be/abc",
            VideoDetails(
                provider="YouTube",
                title="Clip",
                description="About",
                thumbnail_url="https://i.ytimg.com/vi/abc/hqdefault.jpg",
                tags=["#cats", "#music"],
            ),
        )
        jsonschema.validate(_roundtrip(snapshot.to_response()), SNAPSHOT_SCHEMA)

    def test_capped_fields_stay_within_schema_limits(self):
        head = (
            f'<meta property="og:title" content="{"t" * 1000}">'
            f'<meta property="og:description" content="{"d " * 2000}">'
        )
        snapshot = extract_html_snapshot("https://example.com/post", _html(head), "fedineko-crabo")
        jsonschema.validate(_roundtrip(snapshot.to_response()), SNAPSHOT_SCHEMA)

    def test_snapshot_requires_mandatory_fields(self):
        """Missing mandatory fields fail validation."""
        with pytest.raises(jsonschema.ValidationError):
            jsonschema.validate({"url": "https://example.com/"}, SNAPSHOT_SCHEMA)

    def test_snapshot_rejects_extra_fields(self):
        """Extra fields fail validation (additionalProperties: false)."""
        data = _roundtrip(Snapshot(url="https://example.com/", source=SnapshotSource.HTML_META).to_response())
        data["body"] = "<html>...</html>"
        with pytest.raises(jsonschema.ValidationError):
            jsonschema.validate(data, SNAPSHOT_SCHEMA)

    def test_tags_must_be_hashtags(self):
        data = _roundtrip(
            Snapshot(url="https://youtu.be/x", source=SnapshotSource.VIDEO_API, tags=["cats"]).to_response()
        )
        with pytest.raises(jsonschema.ValidationError):
            jsonschema.validate(data, SNAPSHOT_SCHEMA)

    def test_unknown_source_is_rejected(self):
        data = _roundtrip(Snapshot(url="https://example.com/", source=SnapshotSource.HTML_META).to_response())
        data["source"] = "oembed"
        with pytest.raises(jsonschema.ValidationError):
            jsonschema.validate(data, SNAPSHOT_SCHEMA)


# ============================================================================
# Error Schema Tests
# ============================================================================

@pytest.mark.contract
class TestErrorSchema:
    """Every pipeline error renders a response matching error_response.schema.json."""

    @pytest.mark.parametrize(
        "error",
        [
            UrlRejected("ftp://example.com/", "unsupported scheme ftp"),
            SiteSuppressed("https://down.example/", "suppressed", retry_after=120.0),
            DisallowedByRobots("https://example.com/private", "robots.txt disallows /private"),
            FetchFailed("https://example.com/", "TIMEOUT"),
            ExtractionFailed("https://example.com/a.pdf", "unsupported content type application/pdf"),
        ],
    )
    def test_error_responses_against_schema(self, error):
        jsonschema.validate(_roundtrip(SnapshotResult(url=error.url, error=error).to_response()), ERROR_SCHEMA)

    def test_unknown_error_kind_is_rejected(self):
        with pytest.raises(jsonschema.ValidationError):
            jsonschema.validate(
                {"url": "https://example.com/", "error": {"kind": "timeout", "message": "x"}},
                ERROR_SCHEMA,
            )

    def test_empty_message_is_rejected(self):
        with pytest.raises(jsonschema.ValidationError):
            jsonschema.validate(
                {"url": "https://example.com/", "error": {"kind": "fetch_failed", "message": ""}},
                ERROR_SCHEMA,
            )
