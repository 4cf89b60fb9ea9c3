"""Fetcher subsystem: HTTP safety checks, robots policy, and site health."""

from fetcher.health import HealthVerdict, SiteHealthTracker
from fetcher.http import HttpFetchStage, fetch_url
from fetcher.robots import RobotsPolicyResolver, RobotsVerdict, parse_robots_txt

__all__ = [
    "fetch_url",
    "HttpFetchStage",
    "HealthVerdict",
    "SiteHealthTracker",
    "RobotsPolicyResolver",
    "RobotsVerdict",
    "parse_robots_txt",
]
