"""Per-host site health tracking with circuit-breaker suppression."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from typing import Callable

from core.cache import PolicyCache
from core.config import CraboConfig
from core.models import FetchOutcome, HealthVerdict
from core.structured_logging import EventHook, default_event_hook


@dataclass(slots=True)
class SiteHealthRecord:
    """Connection error accounting for one host, mutated under the tracker lock."""

    host: str
    window_start: float | None = None
    error_count: int = 0
    suppressed_until: float | None = None
    last_outcome: FetchOutcome | None = None

    def is_suppressed(self, now: float) -> bool:
        """Open state: suppression deadline is still in the future."""
        return self.suppressed_until is not None and now < self.suppressed_until


class SiteHealthTracker:
    """
    Two-state circuit breaker per host.

    Closed -> Open once ``suppression_error_threshold`` connection-level
    errors land inside one ``suppression_window``. Open -> Closed as soon
    as ``suppression_duration`` has elapsed; there is no half-open probe.
    Successes and non-connection errors never reset the count early.
    """

    def __init__(
        self,
        config: CraboConfig | None = None,
        clock_fn: Callable[[], float] | None = None,
        event_hook: EventHook | None = None,
    ) -> None:
        """Initialize thresholds from config with optional test-time clock hook."""
        self.config = config or CraboConfig()
        self._clock = clock_fn or time.monotonic
        self._event_hook = event_hook or default_event_hook
        self._lock = threading.Lock()
        self._records: PolicyCache[SiteHealthRecord] = PolicyCache(
            self.config.health_capacity,
            clock_fn=self._clock,
        )

    def _record_for(self, host: str) -> SiteHealthRecord:
        """Return the live record for ``host``, creating it. Caller holds the lock."""
        record = self._records.get(host)
        if record is None:
            record = SiteHealthRecord(host=host)
            self._records.put(host, record, ttl=None)
        return record

    def check(self, host: str) -> HealthVerdict:
        """Return SUPPRESSED while the host's circuit is open."""
        host = host.lower()
        lifted = False
        with self._lock:
            record = self._records.get(host)
            if record is None or record.suppressed_until is None:
                return HealthVerdict.ALLOWED
            now = self._clock()
            if record.is_suppressed(now):
                return HealthVerdict.SUPPRESSED
            record.suppressed_until = None
            lifted = True

        if lifted:
            self._event_hook("site_suppression_lifted", {"component": "health", "host": host})
        return HealthVerdict.ALLOWED

    def retry_after(self, host: str) -> float | None:
        """Seconds until suppression of ``host`` ends, or None if not suppressed."""
        with self._lock:
            record = self._records.get(host.lower())
            if record is None or record.suppressed_until is None:
                return None
            remaining = record.suppressed_until - self._clock()
            return remaining if remaining > 0 else None

    def record_outcome(self, host: str, outcome: FetchOutcome) -> None:
        """Account one pipeline outcome for ``host`` as a single atomic update."""
        host = host.lower()
        opened = False
        with self._lock:
            now = self._clock()
            record = self._record_for(host)
            record.last_outcome = outcome
            if outcome is not FetchOutcome.CONNECTION_ERROR:
                return

            window = self.config.suppression_window
            if record.window_start is None or now - record.window_start >= window:
                record.window_start = now
                record.error_count = 0
            record.error_count += 1

            if record.error_count >= self.config.suppression_error_threshold:
                record.suppressed_until = now + self.config.suppression_duration
                record.window_start = None
                record.error_count = 0
                opened = True

        if opened:
            self._event_hook(
                "site_suppressed",
                {
                    "component": "health",
                    "host": host,
                    "threshold": self.config.suppression_error_threshold,
                    "window_seconds": self.config.suppression_window,
                    "suppression_seconds": self.config.suppression_duration,
                },
            )

    def snapshot(self, host: str) -> SiteHealthRecord | None:
        """Copy of the current record for diagnostics."""
        with self._lock:
            record = self._records.get(host.lower())
            return replace(record) if record is not None else None
