"""Data models for rssgram."""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DESCRIPTION_TYPE_RAW = "raw"
DESCRIPTION_TYPE_LINK = "link"
DESCRIPTION_TYPES = (DESCRIPTION_TYPE_RAW, DESCRIPTION_TYPE_LINK)


@dataclass(frozen=True)
class FeedConfig:
    """A configured RSS/Atom source. Identity is the URL."""

    url: str
    name: str = ""
    key: str = ""
    description_type: str = DESCRIPTION_TYPE_RAW
    tags: tuple[str, ...] = ()
    interval: timedelta | None = None

    def get_key(self) -> str:
        if self.key:
            return self.key
        return hashlib.sha256(self.url.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SilentModeConfig:
    """Local time-of-day window during which notifications are muted."""

    start: str = ""
    finish: str = ""
    timezone: str = "UTC"


@dataclass(frozen=True)
class TelegramConfig:
    channel_name: str
    bot_token: str
    silent_mode: SilentModeConfig = field(default_factory=SilentModeConfig)
    enable_tags: bool = False


@dataclass(frozen=True)
class Config:
    """Parsed process configuration."""

    feeds: tuple[FeedConfig, ...]
    telegram: TelegramConfig
    db_path: str = "data.db"
    poll_interval: float = 10.0
    send_interval: float = 10.0
    send_delay: float = 1.0


@dataclass
class Watermark:
    """Per-feed high-water mark stored in the feeds table."""

    url: str
    last_checked: datetime
    last_posted: datetime


@dataclass
class SiteDescription:
    """Metadata scraped from a web page."""

    title: str = ""
    description: str = ""
    image: str = ""


@dataclass
class FeedItem:
    """Represents a single entry stored for delivery.

    The id is derived from the item's own content and never changes after
    creation; use ``FeedItem.create`` to build new items.
    """

    id: str
    feed_title: str
    title: str
    link: str = ""
    image_url: str = ""
    description: str = ""
    published_at: datetime | None = None
    updated_at: datetime | None = None
    tags: list[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    is_sent: bool = False
    sent_at: datetime | None = None
    failed_count: int = 0

    @classmethod
    def create(
        cls,
        feed_title: str,
        title: str,
        link: str = "",
        image_url: str = "",
        description: str = "",
        published_at: datetime | None = None,
        updated_at: datetime | None = None,
        tags: list[str] | None = None,
    ) -> "FeedItem":
        return cls(
            id=make_item_id(title, link, description, image_url),
            feed_title=feed_title,
            title=title,
            link=link,
            image_url=image_url,
            description=description,
            published_at=published_at,
            updated_at=updated_at,
            tags=list(tags or []),
        )

    def tags_json(self) -> str:
        return json.dumps(self.tags, ensure_ascii=False) if self.tags else "[]"

    def metadata_json(self) -> str:
        return json.dumps(self.metadata, ensure_ascii=False) if self.metadata else "{}"


def make_item_id(title: str, link: str, description: str, image_url: str) -> str:
    """Content hash identifying a feed item."""
    raw = f"{title}__{link}__{description}__{image_url}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
