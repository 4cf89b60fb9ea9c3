"""Parser package: streaming head scan and robots meta directives."""

from parser.directives import DirectiveVerdict, parse_meta_directive, resolve_directives
from parser.html import PageMetadata, scan_document

__all__ = [
    "DirectiveVerdict",
    "PageMetadata",
    "parse_meta_directive",
    "resolve_directives",
    "scan_document",
]
