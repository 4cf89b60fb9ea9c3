"""Core module for crabo."""

from core.cache import PolicyCache
from core.config import CraboConfig
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
    Snapshot,
    SnapshotRequest,
    SnapshotSource,
    VideoDetails,
)

__all__ = [
    "PolicyCache",
    "CraboConfig",
    "PipelineError",
    "UrlRejected",
    "SiteSuppressed",
    "DisallowedByRobots",
    "FetchFailed",
    "ExtractionFailed",
    "FetchedDoc",
    "FetchLog",
    "FetchOutcome",
    "Snapshot",
    "SnapshotRequest",
    "SnapshotSource",
    "VideoDetails",
]
