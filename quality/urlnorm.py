"""URL hygiene: tracking-parameter removal, cache keys, and host pattern matching."""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


_REMOVABLE_QUERY_PARAMS = {
    "smid",
    "via",
    "fbclid",
    "gclid",
}


def _is_campaign_param(key: str) -> bool:
    """True for campaign tracking parameters, including double-escaped ``amp;`` forms."""
    lowered = key.lower()
    while lowered.startswith("amp;"):
        lowered = lowered[4:]
    return lowered.startswith("utm") or lowered in _REMOVABLE_QUERY_PARAMS


def strip_campaign_parameters(url: str) -> str:
    """
    Remove campaign tracking parameters from ``url``.

    Some sites deny robots access to any URL with a query string while
    tracking parameters do not change the content; dropping them keeps
    the robots check and the cache key about the page itself.
    """
    parsed = urlsplit(url)
    if not parsed.query:
        return url
    pairs = parse_qsl(parsed.query, keep_blank_values=True)
    kept = [(key, value) for key, value in pairs if not _is_campaign_param(key)]
    if len(kept) == len(pairs):
        return url
    return urlunsplit(
        (parsed.scheme, parsed.netloc, parsed.path, urlencode(kept, doseq=True), parsed.fragment)
    )


def canonicalize_url(url: str) -> str:
    """
    Canonicalize URL for snapshot cache keys.

    Rules:
    - Lowercase scheme and host, drop default ports
    - Remove fragment
    - Drop campaign tracking params
    - Sort query params
    """
    parsed = urlsplit(strip_campaign_parameters(url.strip()))
    scheme = parsed.scheme.lower()
    if scheme not in {"http", "https"}:
        return url

    hostname = (parsed.hostname or "").lower()

    # Preserve explicit non-default port.
    if parsed.port:
        default_port = 80 if scheme == "http" else 443
        netloc = hostname if parsed.port == default_port else f"{hostname}:{parsed.port}"
    else:
        netloc = hostname

    path = parsed.path or "/"
    query_pairs = sorted(parse_qsl(parsed.query, keep_blank_values=True))
    query = urlencode(query_pairs, doseq=True)

    return urlunsplit((scheme, netloc, path, query, ""))


def host_matches(host: str, patterns: Iterable[str]) -> bool:
    """Case-insensitive glob match of a hostname (port ignored) against patterns."""
    hostname = host.lower().rsplit("@", 1)[-1]
    if hostname.startswith("["):
        hostname = hostname.split("]", 1)[0] + "]"
    else:
        hostname = hostname.split(":", 1)[0]
    return any(fnmatchcase(hostname, pattern.lower()) for pattern in patterns)
