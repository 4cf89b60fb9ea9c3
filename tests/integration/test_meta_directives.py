"""Tests for robots meta directive parsing and resolution."""

from __future__ import annotations

import pytest

from parser.directives import (
    WILDCARD_AGENT,
    DirectiveAction,
    directive_targets,
    parse_meta_directive,
    resolve_directives,
)
from parser.html import scan_document

AGENT = "fedineko-crabo"


def _verdict(*metas: tuple[str, str]):
    directives = []
    for name, content in metas:
        directives.extend(parse_meta_directive(name, content, AGENT))
    return resolve_directives(directives)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("robots", {WILDCARD_AGENT}),
        ("ROBOTS", {WILDCARD_AGENT}),
        ("fedineko-crabo", {AGENT}),
        ("fedineko-crabo, some-other-bot", {AGENT}),
        ("googlebot", set()),
        ("description", set()),
    ],
)
def test_directive_targets(name: str, expected: set[str]):
    assert directive_targets(name, AGENT) == frozenset(expected)


@pytest.mark.unit
def test_unrelated_meta_yields_no_directive():
    assert parse_meta_directive("googlebot", "noindex", AGENT) == []


@pytest.mark.unit
@pytest.mark.parametrize(
    ("content", "noindex", "nosnippet"),
    [
        ("noindex", True, False),
        ("nosnippet", False, True),
        ("none", True, True),
        ("NoIndex, NoArchive", True, False),
        ("noarchive", False, False),
        ("all", False, False),
    ],
)
def test_keyword_effects(content: str, noindex: bool, nosnippet: bool):
    verdict = _verdict(("robots", content))

    assert verdict.noindex is noindex
    assert verdict.nosnippet is nosnippet


@pytest.mark.unit
def test_generic_directives_are_or_combined():
    verdict = _verdict(("robots", "noindex"), ("robots", "nosnippet"))

    assert verdict.noindex is True
    assert verdict.blocks_snippet is True


@pytest.mark.unit
def test_agent_specific_directive_wins_over_generic():
    """A tag naming the agent overrides generic robots tags, even when permissive."""
    verdict = _verdict(("robots", "none"), ("fedineko-crabo", "all"))

    assert verdict.noindex is False
    assert verdict.nosnippet is False


@pytest.mark.unit
def test_agent_specific_restriction_applies():
    verdict = _verdict(("robots", "all"), ("fedineko-crabo", "nosnippet"))

    assert verdict.nosnippet is True
    assert verdict.noindex is False


@pytest.mark.unit
def test_addressed_tag_without_keywords_still_outranks_generic():
    verdict = _verdict(("robots", "noindex"), ("fedineko-crabo", "max-image-preview:large"))

    assert verdict.noindex is False


@pytest.mark.unit
def test_directive_action_values():
    assert DirectiveAction("none") is DirectiveAction.NONE


@pytest.mark.integration
def test_scan_collects_directives_from_head():
    html_text = (
        "<html><head>"
        '<meta name="robots" content="index">'
        '<meta name="fedineko-crabo" content="nosnippet">'
        '<meta property="og:title" content="Hello">'
        "</head><body></body></html>"
    )

    metadata = scan_document(html_text, AGENT)

    assert metadata.verdict.nosnippet is True
    assert metadata.meta_tags["og:title"] == "Hello"


@pytest.mark.integration
def test_scan_ignores_tags_after_head_regardless_of_chunking():
    """Tags after </head> never count, whatever the feed chunk size."""
    html_text = (
        "<html><head><title>T</title></head>"
        '<body><meta name="robots" content="noindex"><p>text</p></body></html>'
    )

    for chunk_chars in (1, 7, 64, 16_384):
        metadata = scan_document(html_text, AGENT, chunk_chars=chunk_chars)
        assert metadata.verdict.noindex is False
        assert metadata.html_title == "T"
        assert metadata.head_complete is True
