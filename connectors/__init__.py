"""Video API connector implementations."""

from connectors.bilibili import BiliBiliApiClient
from connectors.youtube import YouTubeApiClient

__all__ = ["BiliBiliApiClient", "YouTubeApiClient"]
