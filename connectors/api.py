"""Shared JSON request helper for video API connectors."""

from __future__ import annotations

from typing import Any

import requests
from pydantic import ValidationError

from core.models import VideoDetails
from core.pipeline import VideoApiError


def request_json(
    session: requests.Session,
    url: str,
    *,
    provider: str,
    params: dict[str, str] | None = None,
    timeout_seconds: float,
    user_agent: str,
) -> dict[str, Any]:
    """
    GET ``url`` and decode a JSON object body.

    Raises:
        VideoApiError: Transport failure, non-2xx status, or a body that is
            not a JSON object.
    """
    try:
        response = session.get(
            url,
            params=params,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            timeout=timeout_seconds,
        )
    except requests.RequestException as exc:
        raise VideoApiError(f"{provider} API request failed: {type(exc).__name__}") from exc

    if not 200 <= response.status_code < 300:
        raise VideoApiError(f"{provider} API returned {response.status_code}")

    try:
        payload = response.json()
    except ValueError as exc:
        raise VideoApiError(f"{provider} API returned invalid JSON") from exc

    if not isinstance(payload, dict):
        raise VideoApiError(f"{provider} API returned unexpected payload")
    return payload


def video_details(provider: str, **fields: Any) -> VideoDetails:
    """
    Build VideoDetails from API fields.

    Raises:
        VideoApiError: A field has the wrong type, e.g. a numeric title.
    """
    try:
        return VideoDetails(provider=provider, **fields)
    except ValidationError as exc:
        invalid = ", ".join(".".join(str(part) for part in error["loc"]) for error in exc.errors())
        raise VideoApiError(f"{provider} API returned malformed video details ({invalid})") from exc
