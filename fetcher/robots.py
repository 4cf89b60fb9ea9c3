"""Robots.txt policy resolver with TTL cache, single-flight fetch, and permissive fallback."""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable
from urllib.parse import urlsplit

import requests

from core import addresses
from core.cache import PolicyCache
from core.config import CraboConfig
from core.models import FetchOutcome, RobotsVerdict
from core.structured_logging import EventHook, default_event_hook
from fetcher.http import (
    BodyLimitExceeded,
    RedirectBlocked,
    RedirectLimitExceeded,
    follow_redirects,
    read_body,
)


ROBOTS_PATH = "/robots.txt"


@dataclass(frozen=True, slots=True)
class RobotsRule:
    """
    One Allow/Disallow line of a user-agent group.

    An empty Allow pattern records group membership: it matches every
    path but never outranks a non-empty rule.
    """

    user_agent: str
    allow: bool
    pattern: str

    def matches(self, path: str) -> bool:
        """Prefix match with ``*`` wildcards and an optional ``$`` end anchor."""
        if not self.pattern:
            return True
        return _compile_pattern(self.pattern).match(path) is not None


@dataclass(frozen=True, slots=True)
class RobotsPolicy:
    """Parsed robots rules for one host. Replaced, never mutated, on refresh."""

    host: str
    rules: tuple[RobotsRule, ...]
    fetched_at: float
    ttl: float
    status_code: int | None = None
    fallback: bool = False

    def group_for(self, agent_token: str) -> tuple[RobotsRule, ...] | None:
        """Rules of the exact agent group, else the ``*`` group, else None."""
        token = agent_token.lower()
        specific = tuple(rule for rule in self.rules if rule.user_agent == token)
        if specific:
            return specific
        wildcard = tuple(rule for rule in self.rules if rule.user_agent == "*")
        return wildcard or None

    def matching_rule(self, path: str, agent_token: str) -> RobotsRule | None:
        """Longest matching rule of the selected group; Allow wins ties."""
        group = self.group_for(agent_token)
        if not group:
            return None

        best: RobotsRule | None = None
        for rule in group:
            if not rule.matches(path):
                continue
            if best is None or len(rule.pattern) > len(best.pattern):
                best = rule
            elif len(rule.pattern) == len(best.pattern) and rule.allow:
                best = rule
        return best

    def is_allowed(self, path: str, agent_token: str) -> bool:
        """True unless the winning rule for ``path`` is a Disallow."""
        if path == ROBOTS_PATH:
            return True
        rule = self.matching_rule(path, agent_token)
        return rule is None or rule.allow


@dataclass(slots=True)
class RobotsDecision:
    """Decision payload for one URL robots check."""

    verdict: RobotsVerdict
    host: str
    path: str
    agent_token: str
    robots_url: str
    cache_hit: bool
    fallback: bool
    matched_pattern: str | None

    @property
    def allowed(self) -> bool:
        return self.verdict is RobotsVerdict.ALLOWED


@lru_cache(maxsize=4096)
def _compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a robots path pattern to an anchored regex."""
    anchored = pattern.endswith("$")
    body = pattern[:-1] if anchored else pattern
    regex = ".*".join(re.escape(part) for part in body.split("*"))
    if anchored:
        regex += r"\Z"
    return re.compile(regex, flags=re.DOTALL)


def parse_robots_txt(text: str) -> tuple[RobotsRule, ...]:
    """
    Parse robots.txt into ordered rules.

    Consecutive ``User-agent`` lines share one group; the first Allow or
    Disallow after them closes the header so the next ``User-agent``
    starts a new group. Unknown directives and comments are ignored.
    """
    rules: list[RobotsRule] = []
    agents: list[str] = []
    in_rules = False

    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()

        if key == "user-agent":
            if in_rules:
                agents = []
                in_rules = False
            token = value.lower()
            if token and token not in agents:
                agents.append(token)
                rules.append(RobotsRule(user_agent=token, allow=True, pattern=""))
            continue

        if key not in {"allow", "disallow"}:
            continue
        if not agents:
            continue
        in_rules = True
        if not value:
            # Empty pattern allows everything, already covered by membership.
            continue
        for agent in agents:
            rules.append(RobotsRule(user_agent=agent, allow=key == "allow", pattern=value))

    return tuple(rules)


def split_host_and_path(url: str) -> tuple[str, str, str]:
    """Return ``(scheme, host, path)``; path keeps the query string."""
    parsed = urlsplit(url)
    host = parsed.netloc.lower()
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return (parsed.scheme or "https").lower(), host, path


class RobotsPolicyResolver:
    """
    Answer allow/deny for paths with per-host cached robots policies.

    Concurrent cache misses for one host share a single robots.txt fetch:
    the first caller fetches, the others wait on its in-flight marker and
    re-read the cache. The marker is always cleared when the fetch ends.
    """

    def __init__(
        self,
        config: CraboConfig | None = None,
        session: requests.Session | None = None,
        cache: PolicyCache[RobotsPolicy] | None = None,
        health: Any | None = None,
        clock_fn: Callable[[], float] | None = None,
        event_hook: EventHook | None = None,
    ) -> None:
        """Initialize cache, HTTP session, and the optional health tracker hook."""
        self.config = config or CraboConfig()
        self._session = session or requests.Session()
        self._clock = clock_fn or time.monotonic
        self._cache = cache if cache is not None else PolicyCache(
            self.config.robots_cache_capacity, clock_fn=self._clock
        )
        self._health = health
        self._event_hook = event_hook or default_event_hook
        self._inflight_lock = threading.Lock()
        self._inflight: dict[str, threading.Event] = {}

    def clear_cache(self) -> None:
        """Clear all cached robots policies."""
        self._cache.clear()

    def is_allowed(
        self,
        host: str,
        path: str,
        agent_token: str | None = None,
        scheme: str = "https",
    ) -> RobotsVerdict:
        """Return ALLOWED or DENIED for ``path`` on ``host``."""
        token = agent_token or self.config.agent_token
        policy, _ = self.get_policy(host, scheme=scheme)
        if policy.is_allowed(path or "/", token):
            return RobotsVerdict.ALLOWED
        return RobotsVerdict.DENIED

    def evaluate(self, url: str, agent_token: str | None = None) -> RobotsDecision:
        """Return a full robots decision for observability."""
        scheme, host, path = split_host_and_path(url)
        token = agent_token or self.config.agent_token
        policy, cache_hit = self.get_policy(host, scheme=scheme)
        rule = policy.matching_rule(path, token)
        verdict = RobotsVerdict.ALLOWED if policy.is_allowed(path, token) else RobotsVerdict.DENIED
        return RobotsDecision(
            verdict=verdict,
            host=host,
            path=path,
            agent_token=token,
            robots_url=f"{scheme}://{host}{ROBOTS_PATH}",
            cache_hit=cache_hit,
            fallback=policy.fallback,
            matched_pattern=rule.pattern if rule is not None and rule.pattern else None,
        )

    def get_policy(self, host: str, scheme: str = "https") -> tuple[RobotsPolicy, bool]:
        """Return ``(policy, cache_hit)``, fetching at most once per host at a time."""
        host = host.lower()
        while True:
            cached = self._cache.get(host)
            if cached is not None:
                return cached, True

            with self._inflight_lock:
                cached = self._cache.get(host)
                if cached is not None:
                    return cached, True
                marker = self._inflight.get(host)
                leader = marker is None
                if leader:
                    marker = threading.Event()
                    self._inflight[host] = marker

            if leader:
                try:
                    policy = self._fetch_policy(host, scheme)
                    self._cache.put(host, policy, policy.ttl)
                    return policy, False
                finally:
                    with self._inflight_lock:
                        self._inflight.pop(host, None)
                    marker.set()

            marker.wait(timeout=self.config.fetch_timeout)

    def _fallback(
        self,
        host: str,
        robots_url: str,
        reason: str,
        status_code: int | None = None,
    ) -> RobotsPolicy:
        """Permissive empty policy cached for the short failure TTL."""
        ttl = self.config.robots_fetch_failure_ttl
        self._event_hook(
            "robots_fallback",
            {
                "component": "robots",
                "host": host,
                "robots_url": robots_url,
                "robots_status_code": status_code,
                "ttl_seconds": ttl,
                "message": f"{reason}; allowing",
            },
        )
        return RobotsPolicy(
            host=host,
            rules=(),
            fetched_at=self._clock(),
            ttl=ttl,
            status_code=status_code,
            fallback=True,
        )

    def _record_connection_error(self, host: str) -> None:
        if self._health is not None:
            self._health.record_outcome(host, FetchOutcome.CONNECTION_ERROR)

    def _fetch_policy(self, host: str, scheme: str) -> RobotsPolicy:
        robots_url = f"{scheme}://{host}{ROBOTS_PATH}"
        blocked_networks = addresses.blocked_networks()
        if addresses.host_is_blocked(urlsplit(robots_url).hostname or "", blocked_networks):
            return self._fallback(host, robots_url, "robots.txt host is in a blocked address range")

        try:
            response, _ = follow_redirects(
                self._session,
                robots_url,
                timeout_seconds=self.config.fetch_timeout,
                max_redirects=self.config.max_redirects,
                headers={"User-Agent": self.config.user_agent_string},
                blocked_networks=blocked_networks,
            )
        except (RedirectBlocked, RedirectLimitExceeded) as exc:
            return self._fallback(host, robots_url, f"robots.txt redirect rejected ({exc})")
        except (requests.Timeout, requests.ConnectionError) as exc:
            self._record_connection_error(host)
            return self._fallback(host, robots_url, f"robots.txt unreachable ({type(exc).__name__})")
        except requests.RequestException as exc:
            return self._fallback(host, robots_url, f"robots.txt request error ({type(exc).__name__})")

        try:
            if not 200 <= response.status_code < 300:
                return self._fallback(
                    host,
                    robots_url,
                    f"robots.txt returned {response.status_code}",
                    status_code=response.status_code,
                )
            body, _ = read_body(response, self.config.robots_max_bytes)
        except BodyLimitExceeded as exc:
            return self._fallback(host, robots_url, str(exc), status_code=response.status_code)
        except (requests.Timeout, requests.ConnectionError) as exc:
            self._record_connection_error(host)
            return self._fallback(host, robots_url, f"robots.txt read failed ({type(exc).__name__})")
        except requests.RequestException as exc:
            return self._fallback(host, robots_url, f"robots.txt read failed ({type(exc).__name__})")
        finally:
            response.close()

        text = body.decode("utf-8", errors="replace").lstrip("\ufeff")
        rules = parse_robots_txt(text)
        self._event_hook(
            "robots_fetched",
            {
                "component": "robots",
                "host": host,
                "robots_url": robots_url,
                "robots_status_code": response.status_code,
                "rule_count": len(rules),
                "ttl_seconds": self.config.robots_cache_ttl,
            },
        )
        return RobotsPolicy(
            host=host,
            rules=rules,
            fetched_at=self._clock(),
            ttl=self.config.robots_cache_ttl,
            status_code=response.status_code,
        )
