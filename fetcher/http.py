"""HTTP page fetcher with size caps, redirect limits, and SSRF protections."""

from __future__ import annotations

import time
from typing import Iterable
from urllib.parse import urljoin, urlparse

import requests

from core import addresses
from core.config import ALLOWED_PROTOCOLS, CraboConfig
from core.models import FetchErrorCode, FetchedDoc, FetchLog
from core.pipeline import PageFetcher
from core.structured_logging import emit_fetch_log

_DOCUMENT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.5",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Site": "none",
}


class RedirectLimitExceeded(Exception):
    """Raised when a URL exceeds the configured redirect limit."""


class RedirectBlocked(Exception):
    """Raised when a redirect leads to a disallowed protocol or address."""


class BodyLimitExceeded(Exception):
    """Raised when response body exceeds configured limits."""


def _validate_url_scheme(url: str) -> bool:
    """Validate that URL uses allowed protocols."""
    parsed = urlparse(url)
    return parsed.scheme.lower() in ALLOWED_PROTOCOLS


def read_body(
    response: requests.Response,
    max_bytes: int,
    truncate: bool = False,
) -> tuple[bytes, bool]:
    """
    Read a streamed response body up to ``max_bytes``.

    Returns ``(body, truncated)``. With ``truncate=False`` an oversized
    body raises :class:`BodyLimitExceeded` instead.
    """
    chunks: list[bytes] = []
    total = 0
    for chunk in response.iter_content(chunk_size=8192):
        if not chunk:
            continue
        if total + len(chunk) > max_bytes:
            if not truncate:
                raise BodyLimitExceeded(f"response exceeds {max_bytes} bytes")
            chunks.append(chunk[: max_bytes - total])
            return b"".join(chunks), True
        total += len(chunk)
        chunks.append(chunk)
    return b"".join(chunks), False


def follow_redirects(
    session: requests.Session,
    url: str,
    timeout_seconds: float,
    max_redirects: int,
    headers: dict[str, str],
    blocked_networks: Iterable,
) -> tuple[requests.Response, str]:
    """Fetch a URL while enforcing redirect constraints."""
    current_url = url

    for hop in range(max_redirects + 1):
        response = session.get(
            current_url,
            headers=headers,
            timeout=timeout_seconds,
            allow_redirects=False,
            stream=True,
        )

        if 300 <= response.status_code < 400 and response.headers.get("location"):
            response.close()
            if hop >= max_redirects:
                raise RedirectLimitExceeded(f"redirects exceeded {max_redirects}")

            next_url = urljoin(current_url, response.headers["location"])
            if not _validate_url_scheme(next_url):
                raise RedirectBlocked("redirected to disallowed protocol")

            if addresses.host_is_blocked(urlparse(next_url).hostname or "", blocked_networks):
                raise RedirectBlocked("redirected to blocked IP range")

            current_url = next_url
            continue

        return response, current_url

    raise RedirectLimitExceeded(f"redirects exceeded {max_redirects}")


def fetch_url(
    url: str,
    request_id: str | None = None,
    session: requests.Session | None = None,
    *,
    user_agent: str,
    timeout_seconds: float,
    max_redirects: int,
    max_body_bytes: int,
) -> tuple[FetchedDoc | None, FetchLog]:
    """
    Fetch a document using compliance and safety constraints.

    Never raises for transport problems: failures come back as
    ``(None, FetchLog)`` with ``error_code`` set. Bodies larger than
    ``max_body_bytes`` are truncated, not rejected.
    """
    start = time.monotonic()
    blocked_networks = addresses.blocked_networks()

    def _failure(
        code: FetchErrorCode,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> tuple[None, FetchLog]:
        return None, FetchLog(
            url=url,
            status_code=status_code,
            error_code=code,
            error_detail=detail,
            request_id=request_id,
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    if not _validate_url_scheme(url):
        return _failure(FetchErrorCode.SECURITY_BLOCKED, "disallowed protocol")

    hostname = urlparse(url).hostname or ""
    if not hostname:
        return _failure(FetchErrorCode.FETCH_ERROR, "missing host")
    if not addresses.is_valid_host_name(hostname):
        return _failure(FetchErrorCode.FETCH_ERROR, "invalid host name")

    if addresses.host_is_blocked(hostname, blocked_networks):
        return _failure(FetchErrorCode.SECURITY_BLOCKED, "blocked IP range")

    http_session = session or requests.Session()
    headers = {"User-Agent": user_agent, **_DOCUMENT_HEADERS}

    try:
        response, final_url = follow_redirects(
            http_session,
            url,
            timeout_seconds=timeout_seconds,
            max_redirects=max_redirects,
            headers=headers,
            blocked_networks=blocked_networks,
        )
        try:
            if not 200 <= response.status_code < 300:
                return _failure(
                    FetchErrorCode.HTTP_STATUS,
                    f"unexpected status {response.status_code}",
                    status_code=response.status_code,
                )
            body, truncated = read_body(response, max_body_bytes, truncate=True)
        finally:
            response.close()

    except RedirectLimitExceeded as exc:
        return _failure(FetchErrorCode.REDIRECT_LIMIT, str(exc))
    except RedirectBlocked as exc:
        return _failure(FetchErrorCode.SECURITY_BLOCKED, str(exc))
    except requests.Timeout as exc:
        return _failure(FetchErrorCode.TIMEOUT, str(exc))
    except requests.ConnectionError as exc:
        return _failure(FetchErrorCode.CONNECTION_ERROR, str(exc))
    except requests.RequestException as exc:
        return _failure(FetchErrorCode.FETCH_ERROR, str(exc))

    latency_ms = int((time.monotonic() - start) * 1000)
    doc = FetchedDoc(
        status_code=response.status_code,
        final_url=final_url,
        headers={k.lower(): v for k, v in response.headers.items()},
        body_bytes=body,
        truncated=truncated,
        latency_ms=latency_ms,
    )
    log = FetchLog(
        url=url,
        status_code=response.status_code,
        latency_ms=latency_ms,
        bytes_received=len(body),
        request_id=request_id,
    )
    return doc, log


class HttpFetchStage(PageFetcher):
    """PageFetcher backed by fetch_url + structured fetch logs."""

    def __init__(
        self,
        config: CraboConfig | None = None,
        session: requests.Session | None = None,
        log_fetches: bool = True,
    ) -> None:
        """Initialize fetch bounds from config and an optional shared session."""
        self.config = config or CraboConfig()
        self.session = session or requests.Session()
        self.log_fetches = log_fetches

    def fetch(self, url: str, request_id: str | None = None) -> tuple[FetchedDoc | None, FetchLog]:
        """Fetch one URL and emit a structured fetch log line."""
        fetched_doc, fetch_log = fetch_url(
            url,
            request_id=request_id,
            session=self.session,
            user_agent=self.config.user_agent_string,
            timeout_seconds=self.config.fetch_timeout,
            max_redirects=self.config.max_redirects,
            max_body_bytes=self.config.max_document_size,
        )
        if self.log_fetches:
            emit_fetch_log(fetch_log)
        return fetched_doc, fetch_log
