"""RSS/Atom feed parsing using feedparser."""

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import struct_time
from urllib.parse import urlparse

import feedparser
import httpx

from rssgram.download import DeadlineExceeded, download

DEFAULT_TIMEOUT = 10.0


@dataclass
class FeedEntry:
    """A single entry as supplied by the feed, before storage."""

    title: str
    link: str = ""
    image_url: str = ""
    description: str = ""
    published_at: datetime | None = None
    updated_at: datetime | None = None
    categories: list[str] = field(default_factory=list)


@dataclass
class ParsedFeed:
    """Result of parsing an RSS/Atom feed."""

    title: str
    description: str
    items: list[FeedEntry]


class FeedParseError(Exception):
    """Raised when a feed cannot be fetched or parsed."""


def fetch_and_parse(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    client: httpx.Client | None = None,
) -> ParsedFeed:
    """Fetch and parse an RSS or Atom feed from a URL.

    Args:
        url: The feed URL to fetch and parse.
        timeout: Seconds allowed for the whole download, from connecting
            to the last byte of the body.
        client: Optional HTTP client to issue the request with.

    Returns:
        ParsedFeed with feed metadata and entries in document order.

    Raises:
        FeedParseError: If the URL is invalid, unreachable, too slow to
            download, or not a valid feed.
    """
    _validate_url(url)

    try:
        if client is None:
            with httpx.Client() as own_client:
                response = download(own_client, url, timeout)
        else:
            response = download(client, url, timeout)
    except DeadlineExceeded as e:
        raise FeedParseError(f"Timed out fetching {url}: {e}") from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise FeedParseError(f"Could not reach URL {url}: {e}") from e

    if response.status_code in (401, 403):
        raise FeedParseError(
            "Feed requires authentication. Ensure the URL is publicly accessible."
        )

    if response.status_code >= 400:
        raise FeedParseError(f"Could not reach URL {url}: HTTP {response.status_code}")

    return parse_document(response.content)


def parse_document(content: bytes | str) -> ParsedFeed:
    """Decode a downloaded feed document."""
    parsed = feedparser.parse(content)

    if not parsed.get("version") and not parsed.entries:
        raise FeedParseError("URL does not point to a valid RSS or Atom feed")

    return ParsedFeed(
        title=parsed.feed.get("title", ""),
        description=parsed.feed.get("description") or parsed.feed.get("subtitle", ""),
        items=[_to_entry(entry) for entry in parsed.entries],
    )


def _validate_url(url: str) -> None:
    """Validate that the URL has a valid format."""
    try:
        result = urlparse(url)
    except ValueError:
        raise FeedParseError("Invalid URL format")
    if not result.scheme or not result.netloc:
        raise FeedParseError("Invalid URL format")
    if result.scheme not in ("http", "https"):
        raise FeedParseError("Invalid URL format: only http and https are supported")


def _to_entry(entry) -> FeedEntry:
    """Normalize a feedparser entry."""
    return FeedEntry(
        title=entry.get("title", ""),
        link=entry.get("link", ""),
        image_url=_extract_image(entry),
        description=entry.get("summary") or entry.get("description", ""),
        published_at=_parse_date(entry.get("published_parsed")),
        updated_at=_parse_date(entry.get("updated_parsed")),
        categories=[t["term"] for t in entry.get("tags", []) if t.get("term")],
    )


def _extract_image(entry) -> str:
    for key in ("media_content", "media_thumbnail"):
        for media in entry.get(key, []):
            if media.get("url") and media.get("medium", "image") == "image":
                return media["url"]
    for link in entry.get("links", []):
        if link.get("rel") == "enclosure" and link.get("type", "").startswith("image"):
            return link.get("href", "")
    image = entry.get("image")
    if image and image.get("href"):
        return image["href"]
    return ""


def _parse_date(time_struct) -> datetime | None:
    """Convert a feedparser UTC time struct to an aware datetime."""
    if not isinstance(time_struct, struct_time):
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(time_struct), tz=timezone.utc)
    except (ValueError, OverflowError):
        return None
