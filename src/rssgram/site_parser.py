"""Scrape a web page for its title, description and preview image."""

import logging
import random

import httpx
from bs4 import BeautifulSoup

from rssgram.download import DeadlineExceeded, download
from rssgram.models import SiteDescription

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
]


class SiteParseError(Exception):
    """Raised when a page cannot be fetched or parsed."""


class SiteParser:
    """Fetches a page and extracts metadata from its <head>.

    Safe to share between threads: each call only reads ``self.client``.
    Every request, body included, must finish within ``timeout`` seconds.
    """

    def __init__(self, client: httpx.Client | None = None, timeout: float = DEFAULT_TIMEOUT):
        self.client = client or httpx.Client(follow_redirects=True)
        self.timeout = timeout

    def close(self) -> None:
        self.client.close()

    def fetch(self, url: str) -> SiteDescription:
        """Return the page's title, description and a validated image URL.

        Non-HTML responses yield an empty SiteDescription.

        Raises:
            SiteParseError: On network failure, timeout, HTTP error status,
                or a response without a Content-Type.
        """
        try:
            response = download(self.client, url, self.timeout, headers=_headers())
        except DeadlineExceeded as e:
            raise SiteParseError(f"timed out getting content by url {url}: {e}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SiteParseError(f"failed to get content by url {url}: {e}") from e

        if response.status_code >= 400:
            raise SiteParseError(
                f"failed to get content by url {url}: status {response.status_code}"
            )

        content_type = response.headers.get("content-type")
        if not content_type:
            raise SiteParseError("Content-Type header is missing")
        if _media_type(content_type) != "text/html":
            return SiteDescription()

        try:
            soup = BeautifulSoup(response.text, "html.parser")
        except Exception as e:
            raise SiteParseError(f"failed to parse html: {e}") from e

        result = SiteDescription()
        if soup.title and soup.title.string:
            result.title = soup.title.string.strip()

        result.description = (
            _meta_content(soup, name="description")
            or _meta_content(soup, property="og:description")
        )

        image = _meta_content(soup, name="image") or _meta_content(soup, property="og:image")
        if image and self.is_image_url_valid(image):
            result.image = image

        return result

    def is_image_url_valid(self, url: str) -> bool:
        """Check that the URL answers with an image Content-Type."""
        if not url.startswith(("http://", "https://")):
            return False
        try:
            content_type = self._content_type(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Image check failed for %s: %s", url, e)
            return False
        return "image" in content_type

    def _content_type(self, url: str) -> str:
        response = download(
            self.client, url, self.timeout, method="HEAD", headers=_headers(), read_body=False
        )
        if response.status_code == 405:
            response = download(self.client, url, self.timeout, headers=_headers(), read_body=False)
        return response.headers.get("content-type", "")


def _headers() -> dict[str, str]:
    return {"User-Agent": random.choice(USER_AGENTS)}


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return (tag.get("content") or "").strip()
