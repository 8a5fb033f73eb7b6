"""Text helpers for building channel messages."""

from bs4 import BeautifulSoup

ELLIPSIS = "…"
BREAK_CHARS = " .,:;-"


def strip_tags(html: str) -> str:
    """Drop all markup, keeping the text content."""
    if not html:
        return ""
    return BeautifulSoup(html, "html.parser").get_text().strip()


def ellipsis(s: str, limit: int) -> str:
    """Shorten s to at most limit characters plus an ellipsis.

    The cut happens at the last space or punctuation mark at or before
    limit; if there is none, at limit itself.
    """
    if limit <= 0:
        return ""
    if len(s) <= limit:
        return s
    head = s[:limit]
    cut = max(head.rfind(c) for c in BREAK_CHARS)
    if cut <= 0:
        cut = limit
    return s[:cut] + ELLIPSIS
