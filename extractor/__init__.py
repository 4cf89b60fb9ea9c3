"""Extractor package: classify URLs and map page metadata or video details to Snapshots."""

from extractor.snapshot import (
    ContentClassifier,
    ContentKind,
    extract_html_snapshot,
    guess_social,
    metadata_to_snapshot,
    video_details_to_snapshot,
)

__all__ = [
    "ContentClassifier",
    "ContentKind",
    "extract_html_snapshot",
    "guess_social",
    "metadata_to_snapshot",
    "video_details_to_snapshot",
]
