"""
Structured JSON event lines on stdout.

Every component reports through an ``EventHook(event_type, payload)``;
the default hook renders one sorted JSON object per line so runs can be
grepped and replayed. Fetch logs use the same line format.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Callable

from core.models import FetchLog

EventHook = Callable[[str, dict[str, Any]], None]

# Event types that signal degraded service rather than normal progress.
EVENT_LEVELS: dict[str, str] = {
    "robots_fallback": "warning",
    "site_suppressed": "warning",
    "snapshot_failed": "warning",
    "cli_error": "error",
}


def emit_json_event(
    event_type: str,
    *,
    request_id: str | None,
    level: str | None = None,
    **payload: Any,
) -> str:
    """Emit one JSON event line to stdout and return the rendered line."""
    event: dict[str, Any] = {
        "event_type": event_type,
        "level": level or EVENT_LEVELS.get(event_type, "info"),
        "timestamp": datetime.now(UTC).isoformat(),
        "request_id": request_id,
    }
    event.update(payload)
    line = json.dumps(event, ensure_ascii=True, sort_keys=True, default=str)
    print(line)
    return line


def default_event_hook(event_type: str, payload: dict[str, Any]) -> None:
    """Event sink writing component events as structured JSON lines."""
    fields = dict(payload)
    request_id = fields.pop("request_id", None)
    emit_json_event(event_type, request_id=request_id, **fields)


def fetch_log_fields(fetch_log: FetchLog) -> dict[str, Any]:
    """JSON-safe fields of one fetch log entry."""
    return {
        "id": fetch_log.id,
        "url": fetch_log.url,
        "status_code": fetch_log.status_code,
        "latency_ms": fetch_log.latency_ms,
        "bytes_received": fetch_log.bytes_received,
        "error_code": fetch_log.error_code.value if fetch_log.error_code else None,
        "error_detail": fetch_log.error_detail,
        "connection_error": fetch_log.is_connection_error,
        "logged_at": fetch_log.created_at.isoformat(),
    }


def emit_fetch_log(fetch_log: FetchLog) -> str:
    """Emit a ``fetch_log`` line; failed fetches are logged at warning level."""
    return emit_json_event(
        "fetch_log",
        request_id=fetch_log.request_id,
        level="warning" if fetch_log.error_code else "info",
        component="fetcher",
        **fetch_log_fields(fetch_log),
    )
