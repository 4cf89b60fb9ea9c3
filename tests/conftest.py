"""
Shared pytest fixtures and configuration for crabo tests.
"""

from ipaddress import ip_address
from pathlib import Path

import pytest

from core.config import CraboConfig, DAY_SECONDS


# ============================================================================
# Fixtures: Time
# ============================================================================

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Deterministic clock for TTL and circuit-breaker timing."""
    return FakeClock()


# ============================================================================
# Fixtures: Name resolution
# ============================================================================

@pytest.fixture(autouse=True)
def public_dns(monkeypatch):
    """Resolve host names to a public address; IP literals resolve to themselves."""

    def _resolve(hostname: str) -> set[str]:
        try:
            return {str(ip_address(hostname.strip("[]")))}
        except ValueError:
            return {"93.184.216.34"}

    monkeypatch.setattr("core.addresses.resolve_ip_addresses", _resolve)


# ============================================================================
# Fixtures: Configuration
# ============================================================================

@pytest.fixture
def config() -> CraboConfig:
    """Default config with the documented circuit-breaker tuning."""
    return CraboConfig(
        robots_cache_ttl=DAY_SECONDS,
        robots_fetch_failure_ttl=15 * 60,
        suppression_error_threshold=5,
        suppression_window=5 * 60,
        suppression_duration=15 * 60,
        fetch_timeout=2.0,
    )


# ============================================================================
# Fixtures: Events
# ============================================================================

class EventRecorder:
    """Collect ``(event_type, payload)`` pairs passed to an event hook."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, object]]] = []

    def __call__(self, event_type: str, payload: dict[str, object]) -> None:
        self.events.append((event_type, dict(payload)))

    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]

    def of_type(self, event_type: str) -> list[dict[str, object]]:
        return [payload for kind, payload in self.events if kind == event_type]


@pytest.fixture
def events() -> EventRecorder:
    """Event hook that records component events instead of printing them."""
    return EventRecorder()


# ============================================================================
# Fixtures: File Paths
# ============================================================================

@pytest.fixture
def schemas_dir() -> Path:
    """Path to schemas directory."""
    return Path(__file__).parent.parent / "schemas"


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "contract: contract schema compliance tests")
    config.addinivalue_line("markers", "integration: end-to-end integration tests")
    config.addinivalue_line("markers", "unit: unit tests")
