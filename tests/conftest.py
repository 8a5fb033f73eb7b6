"""Shared test fixtures for rssgram tests."""

import os
import tempfile
import time
from datetime import datetime, timezone

import pytest

from rssgram.database import Database
from rssgram.feed_parser import FeedEntry, ParsedFeed
from rssgram.models import SiteDescription


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description>Description of the &lt;b&gt;first&lt;/b&gt; article</description>
      <category>news</category>
      <category>tech</category>
      <media:content url="https://example.com/img-1.jpg" medium="image"/>
      <pubDate>Fri, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Fri, 13 Feb 2026 09:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Undated Article</title>
      <link>https://example.com/article-3</link>
      <description>No date here</description>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <published>2026-02-13T10:00:00Z</published>
    <updated>2026-02-13T11:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_NOT_A_FEED_HTML = """<!DOCTYPE html>
<html>
  <body>This is not a feed</body>
</html>"""

SAMPLE_PAGE_HTML = """<!DOCTYPE html>
<html>
<head>
  <title> Page Title </title>
  <meta name="description" content="Regular description">
  <meta property="og:description" content="OG description">
  <meta property="og:image" content="https://example.com/og.png">
</head>
<body><p>Body</p></body>
</html>"""


def ts(hour: int, minute: int = 0, day: int = 13) -> datetime:
    """Aware UTC timestamp on a fixed February 2026 day."""
    return datetime(2026, 2, day, hour, minute, tzinfo=timezone.utc)


def entry(title: str, published_at: datetime | None, **kwargs) -> FeedEntry:
    return FeedEntry(
        title=title,
        link=kwargs.pop("link", f"https://example.com/{title.replace(' ', '-')}"),
        published_at=published_at,
        **kwargs,
    )


def trickle(body: bytes, pieces: int = 20, pause: float = 0.05):
    """Yield body in slices, sleeping before each one like a slow server."""
    step = max(1, len(body) // pieces)
    for start in range(0, len(body), step):
        time.sleep(pause)
        yield body[start:start + step]


class FakeFetcher:
    """Stands in for fetch_and_parse, returning queued results per URL."""

    def __init__(self, feeds: dict[str, ParsedFeed | Exception] | None = None):
        self.feeds = feeds or {}
        self.calls: list[tuple[str, float]] = []

    def __call__(self, url: str, timeout: float) -> ParsedFeed:
        self.calls.append((url, timeout))
        result = self.feeds[url]
        if isinstance(result, Exception):
            raise result
        return result


class FakeEnricher:
    """Returns canned SiteDescriptions keyed by page URL."""

    def __init__(self, pages: dict[str, SiteDescription | Exception] | None = None):
        self.pages = pages or {}
        self.calls: list[str] = []

    def fetch(self, url: str) -> SiteDescription:
        self.calls.append(url)
        result = self.pages.get(url, SiteDescription())
        if isinstance(result, Exception):
            raise result
        return result


class FakeTransport:
    """Records messages; fails for captions/texts containing a marker."""

    def __init__(self, fail_marker: str | None = None, error: Exception | None = None):
        self.fail_marker = fail_marker
        self.error = error
        self.messages: list[dict] = []
        self.photos: list[dict] = []

    def _maybe_fail(self, text: str) -> None:
        if self.fail_marker and self.fail_marker in text:
            raise self.error

    def send_message(self, text, disable_link_preview=True, disable_notification=False):
        self._maybe_fail(text)
        self.messages.append({
            "text": text,
            "disable_link_preview": disable_link_preview,
            "disable_notification": disable_notification,
        })

    def send_photo(self, photo_url, caption, disable_notification=False):
        self._maybe_fail(caption)
        self.photos.append({
            "photo": photo_url,
            "caption": caption,
            "disable_notification": disable_notification,
        })


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def db(tmp_db_path):
    """A connected Database on a temporary file."""
    database = Database(tmp_db_path)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def sample_rss_xml():
    """Sample valid RSS 2.0 XML."""
    return SAMPLE_RSS_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_not_a_feed_html():
    return SAMPLE_NOT_A_FEED_HTML


@pytest.fixture
def sample_page_html():
    return SAMPLE_PAGE_HTML
