"""
Runtime configuration for crabo.

Every knob of the compliance gate (robots caching, site suppression,
fetch bounds, identity) is supplied from outside: defaults below are
deployment starting points, not policy baked into the pipeline.

Design: the service stays "safe + slow" by default. Lowering a limit is
always allowed; turning a compliance check off is not possible.
"""

from __future__ import annotations

import os
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Fixed compliance constants
# ============================================================================

ALLOWED_PROTOCOLS: frozenset[str] = frozenset({"http", "https"})
"""Only HTTP(S) URLs can be snapshotted."""

BLOCKED_IP_RANGES: tuple[str, ...] = (
    # IPv4 private
    "127.0.0.1/8",          # Loopback
    "10.0.0.0/8",           # Private
    "172.16.0.0/12",        # Private
    "192.168.0.0/16",       # Private
    "169.254.0.0/16",       # Link-local
    "224.0.0.0/4",          # Multicast
    "255.255.255.255/32",   # Broadcast
    "0.0.0.0/8",            # This network
    # IPv6 private/link-local
    "::1/128",              # Loopback
    "fe80::/10",            # Link-local
    "fc00::/7",             # Unique local addresses (ULA)
    "ff00::/8",             # Multicast
)
"""IP ranges that cannot be fetched (SSRF prevention)."""

HTML_CONTENT_TYPES: frozenset[str] = frozenset({"text/html", "application/xhtml+xml"})
"""Content types the HTML snapshot path is willing to parse."""

LEGACY_USER_AGENT = "fedineko/crabo-0.2"
CURRENT_USER_AGENT = "Fedineko (crabo/0.3.1; +https://fedineko.org/about)"

DAY_SECONDS = 24 * 3600

_ENV_PREFIX = "CRABO_"


class CraboConfig(BaseModel):
    """
    Validated settings shared by every pipeline component.

    Durations are seconds, sizes are bytes. Instances are frozen so a
    running pipeline never sees a setting change underneath it.
    """

    model_config = ConfigDict(frozen=True)

    # ------------------------------------------------------------------
    # Robots.txt policy cache
    # ------------------------------------------------------------------

    robots_cache_ttl: float = Field(default=DAY_SECONDS, gt=0)
    """Lifetime of a successfully fetched robots policy (1 to 7 days observed)."""

    robots_fetch_failure_ttl: float = Field(default=15 * 60, gt=0)
    """Lifetime of the permissive fallback cached when robots.txt is unreachable."""

    robots_max_bytes: int = Field(default=512_000, gt=0)
    """robots.txt bodies larger than this count as a fetch failure."""

    robots_cache_capacity: int = Field(default=512, ge=1)

    # ------------------------------------------------------------------
    # Site health (circuit breaker)
    # ------------------------------------------------------------------

    suppression_error_threshold: int = Field(default=5, ge=1)
    suppression_window: float = Field(default=5 * 60, gt=0)
    suppression_duration: float = Field(default=15 * 60, gt=0)
    health_capacity: int = Field(default=4096, ge=1)

    # ------------------------------------------------------------------
    # Page fetch bounds
    # ------------------------------------------------------------------

    max_document_size: int = Field(default=2_000_000, gt=0)
    """HTML bodies are truncated to this many bytes before parsing."""

    fetch_timeout: float = Field(default=10.0, gt=0)
    max_redirects: int = Field(default=5, ge=0)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    agent_token: str = "fedineko-crabo"
    """Token matched against robots.txt groups and robots meta tags."""

    user_agent_string: str = CURRENT_USER_AGENT
    """Outbound User-Agent header, either legacy or current format."""

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    video_host_allowlist: tuple[str, ...] = (
        "youtube.com",
        "*.youtube.com",
        "youtu.be",
        "bilibili.com",
        "*.bilibili.com",
        "b23.tv",
    )
    """Host glob patterns routed to video API clients."""

    ignored_hosts: tuple[str, ...] = ("twitter.com", "*.twitter.com", "x.com", "*.x.com")
    """Hosts known to answer with useless pages; never fetched."""

    youtube_api_key: str | None = None

    # ------------------------------------------------------------------
    # Snapshot service
    # ------------------------------------------------------------------

    snapshot_cache_ttl: float = Field(default=7 * DAY_SECONDS, gt=0)
    snapshot_cache_capacity: int = Field(default=2048, ge=1)
    max_concurrency: int = Field(default=8, ge=1)

    @field_validator("agent_token", "user_agent_string")
    @classmethod
    def validate_identity(cls, value: str) -> str:
        """Identity strings must be non-empty."""
        value = value.strip()
        if not value:
            raise ValueError("identity values must not be empty")
        return value

    @field_validator("agent_token")
    @classmethod
    def validate_agent_token(cls, value: str) -> str:
        """Agent tokens are compared case-insensitively; store lowercase."""
        if any(ch.isspace() for ch in value):
            raise ValueError("agent_token must not contain whitespace")
        return value.lower()

    @field_validator("video_host_allowlist", "ignored_hosts", mode="before")
    @classmethod
    def split_host_patterns(cls, value: object) -> object:
        """Accept comma-separated strings for host pattern lists."""
        if isinstance(value, str):
            return tuple(part.strip().lower() for part in value.split(",") if part.strip())
        return value

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: object,
    ) -> "CraboConfig":
        """
        Build config from ``CRABO_*`` environment variables.

        ``CRABO_ROBOTS_CACHE_TTL=604800`` sets ``robots_cache_ttl``, etc.
        Keyword overrides win over the environment; ``None`` overrides are
        ignored so CLI flags can be passed through untouched.

        Raises:
            ValueError: If any value fails validation.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = env.get(_ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
