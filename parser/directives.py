"""Robots meta directives: parse ``<meta name="robots">``-family tags and combine them."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

WILDCARD_AGENT = "*"

_KEYWORD_SPLIT_RE = re.compile(r"[\s,]+")


class DirectiveAction(str, Enum):
    """Directive keywords recognized in robots meta content."""
    NO_INDEX = "noindex"
    NO_SNIPPET = "nosnippet"
    NONE = "none"  # noindex + nosnippet
    ALL = "all"  # addressed, but no restriction


@dataclass(frozen=True, slots=True)
class MetaDirective:
    """One directive keyword and the agent tokens it addresses."""

    applies_to: frozenset[str]
    action: DirectiveAction

    @property
    def is_specific(self) -> bool:
        """True when the directive names an agent rather than all robots."""
        return any(token != WILDCARD_AGENT for token in self.applies_to)


@dataclass(frozen=True, slots=True)
class DirectiveVerdict:
    """Strongest restriction applying to the agent for one document."""

    noindex: bool = False
    nosnippet: bool = False

    @property
    def blocks_snippet(self) -> bool:
        return self.nosnippet


ALLOW_ALL = DirectiveVerdict()


def directive_targets(name: str, agent_token: str) -> frozenset[str]:
    """
    Agent tokens addressed by a meta ``name`` attribute.

    ``name`` is split on commas; a part containing ``robots`` addresses
    every agent, a part containing the agent token addresses us.
    """
    token = agent_token.lower()
    targets: set[str] = set()
    for part in name.split(","):
        normalized = part.strip().lower()
        if not normalized:
            continue
        if "robots" in normalized:
            targets.add(WILDCARD_AGENT)
        if token and token in normalized:
            targets.add(token)
    return frozenset(targets)


def parse_meta_directive(name: str, content: str, agent_token: str) -> list[MetaDirective]:
    """Parse one ``<meta>`` element into directives relevant to ``agent_token``."""
    targets = directive_targets(name, agent_token)
    if not targets:
        return []

    directives: list[MetaDirective] = []
    seen: set[DirectiveAction] = set()
    for keyword in _KEYWORD_SPLIT_RE.split(content.lower()):
        try:
            action = DirectiveAction(keyword)
        except ValueError:
            continue
        if action in seen:
            continue
        seen.add(action)
        directives.append(MetaDirective(applies_to=targets, action=action))

    restricting = [d for d in directives if d.action is not DirectiveAction.ALL]
    if not restricting:
        # Still addressed to the agent, so it outranks generic tags.
        return [MetaDirective(applies_to=targets, action=DirectiveAction.ALL)]
    return restricting


def resolve_directives(directives: Iterable[MetaDirective]) -> DirectiveVerdict:
    """
    Combine directives into one verdict.

    Directives naming the agent win over generic ``robots`` ones; within
    the winning set the verdict is the OR of all restrictions.
    """
    collected = list(directives)
    specific = [directive for directive in collected if directive.is_specific]
    effective = specific or collected

    noindex = False
    nosnippet = False
    for directive in effective:
        if directive.action in (DirectiveAction.NO_INDEX, DirectiveAction.NONE):
            noindex = True
        if directive.action in (DirectiveAction.NO_SNIPPET, DirectiveAction.NONE):
            nosnippet = True
    return DirectiveVerdict(noindex=noindex, nosnippet=nosnippet)
