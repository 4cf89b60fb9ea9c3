"""Quality utilities: URL hygiene and text cleaning."""

from quality.text import clean_text
from quality.urlnorm import canonicalize_url, host_matches, strip_campaign_parameters

__all__ = ["canonicalize_url", "clean_text", "host_matches", "strip_campaign_parameters"]
