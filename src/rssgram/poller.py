"""Background polling loop: fetch feeds, detect new entries, store them."""

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from typing import Protocol

from rssgram.database import StorageError
from rssgram.feed_parser import DEFAULT_TIMEOUT, FeedEntry, FeedParseError, ParsedFeed, fetch_and_parse
from rssgram.models import (
    DESCRIPTION_TYPE_LINK,
    EPOCH,
    FeedConfig,
    FeedItem,
    SiteDescription,
    Watermark,
)
from rssgram.stats import Stats

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10
MAX_ENRICH_CONCURRENCY = 16


class FeedRepository(Protocol):
    def get_watermark(self, url: str) -> Watermark | None: ...

    def get_all_watermarks(self) -> list[Watermark]: ...

    def upsert_watermark(self, url: str, last_checked: datetime, last_posted: datetime) -> None: ...

    def delete_watermark(self, url: str) -> bool: ...

    def insert_item(self, item: FeedItem) -> bool: ...


class Enricher(Protocol):
    def fetch(self, url: str) -> SiteDescription: ...


FeedFetcher = Callable[[str, float], ParsedFeed]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def filter_new_entries(entries: Iterable[FeedEntry], last_posted: datetime) -> list[FeedEntry]:
    """Entries published strictly after last_posted. Undated entries never qualify."""
    return [
        e for e in entries
        if e.published_at is not None and e.published_at > last_posted
    ]


def max_published_at(entries: Iterable[FeedEntry], floor: datetime) -> datetime:
    """Latest publish time among entries, never lower than floor."""
    latest = floor
    for entry in entries:
        if entry.published_at is not None and entry.published_at > latest:
            latest = entry.published_at
    return latest


def resolve_tags(feed: FeedConfig, entry: FeedEntry) -> list[str]:
    """Configured tags win; the feed's own categories are the fallback."""
    if feed.tags:
        return list(feed.tags)
    return list(entry.categories)


class FeedPoller:
    """Synchronizes configured feeds into the item store."""

    def __init__(
        self,
        db: FeedRepository,
        feeds: Sequence[FeedConfig],
        enricher: Enricher,
        fetch: FeedFetcher = fetch_and_parse,
        stats: Stats | None = None,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.feeds = list(feeds)
        self.enricher = enricher
        self.fetch = fetch
        self.stats = stats or Stats()
        self.fetch_timeout = fetch_timeout
        self.clock = clock

    async def get_feed(self, feed: FeedConfig) -> ParsedFeed:
        return await asyncio.to_thread(self.fetch, feed.url, self.fetch_timeout)

    async def enrich_entries(self, entries: list[FeedEntry]) -> None:
        """Backfill description and image from each entry's page.

        All pages are fetched concurrently and this returns only after every
        fetch has finished. A failed fetch leaves that entry untouched.
        """
        targets = [e for e in entries if e.link]
        slots = asyncio.Semaphore(MAX_ENRICH_CONCURRENCY)
        results = await asyncio.gather(
            *(self._enrich_one(e.link, slots) for e in targets),
            return_exceptions=True,
        )
        for entry, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("Enrichment of %s failed: %s", entry.link, result)
                continue
            if result.description:
                entry.description = result.description
            elif result.title:
                entry.description = result.title
            if result.image:
                entry.image_url = result.image

    async def _enrich_one(self, url: str, slots: asyncio.Semaphore) -> SiteDescription:
        async with slots:
            return await asyncio.to_thread(self.enricher.fetch, url)

    async def process_feed(self, feed: FeedConfig) -> int:
        """Run one poll cycle for a feed. Returns count of new items stored.

        Raises:
            FeedParseError: If the feed could not be fetched; the watermark
                is left as it was.
            StorageError: If an item could not be written; the watermark is
                left as it was so the next cycle retries.
        """
        watermark = self.db.get_watermark(feed.url)
        now = self.clock()

        if (
            watermark is not None
            and feed.interval is not None
            and watermark.last_checked + feed.interval > now
        ):
            return 0

        parsed = await self.get_feed(feed)

        if watermark is None:
            # First sight: remember where the feed is, publish nothing.
            last_posted = max_published_at(parsed.items, EPOCH)
            self.db.upsert_watermark(feed.url, now, last_posted)
            logger.info("Feed '%s' is new, watermark set to %s", feed.url, last_posted.isoformat())
            return 0

        next_posted = max_published_at(parsed.items, watermark.last_posted)
        new_entries = filter_new_entries(parsed.items, watermark.last_posted)

        if new_entries and feed.description_type == DESCRIPTION_TYPE_LINK:
            await self.enrich_entries(new_entries)

        feed_title = feed.name or parsed.title
        inserted = 0
        for entry in new_entries:
            item = FeedItem.create(
                feed_title=feed_title,
                title=entry.title,
                link=entry.link,
                image_url=entry.image_url,
                description=entry.description,
                published_at=entry.published_at,
                updated_at=entry.updated_at,
                tags=resolve_tags(feed, entry),
            )
            if self.db.insert_item(item):
                inserted += 1
            else:
                logger.debug("Item %s already stored", item.id)

        self.db.upsert_watermark(feed.url, now, next_posted)

        if inserted:
            self.stats.new_items[feed_title] += inserted
            logger.info("Feed '%s': %d new items", feed_title, inserted)
        return inserted

    def prune_feeds(self) -> int:
        """Drop watermarks of feeds that are no longer configured."""
        configured = {f.url for f in self.feeds}
        removed = 0
        for watermark in self.db.get_all_watermarks():
            if watermark.url not in configured:
                self.db.delete_watermark(watermark.url)
                logger.info("Feed '%s' removed from config, watermark deleted", watermark.url)
                removed += 1
        return removed

    async def _process_isolated(self, feed: FeedConfig) -> int:
        try:
            return await self.process_feed(feed)
        except FeedParseError as e:
            logger.warning("Feed '%s' error: %s", feed.url, e)
        except StorageError as e:
            logger.error("Feed '%s' storage error: %s", feed.url, e)
        except Exception as e:
            logger.warning("Feed '%s' unexpected error: %s", feed.url, e)
        self.stats.feed_errors[feed.url] += 1
        return 0

    async def poll_feeds_once(self) -> int:
        """Poll all configured feeds once. Returns count of new items found."""
        self.stats.feeds_count = len(self.feeds)
        self.prune_feeds()
        counts = await asyncio.gather(*(self._process_isolated(f) for f in self.feeds))
        return sum(counts)


async def wait_or_stop(stop_event: asyncio.Event, seconds: float) -> None:
    """Sleep for seconds, waking early if stop_event is set."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def start_polling(
    poller: FeedPoller,
    interval: float = DEFAULT_POLL_INTERVAL,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run the polling loop until stop_event is set.

    The next cycle is scheduled only after the previous one has finished.
    """
    stop_event = stop_event or asyncio.Event()
    logger.info("Poller started (interval: %ss, feeds: %d)", interval, len(poller.feeds))

    while not stop_event.is_set():
        try:
            new_count = await poller.poll_feeds_once()
            if new_count > 0:
                logger.info("Poll cycle complete: %d new items", new_count)
        except Exception as e:
            logger.error("Poll cycle failed: %s", e)

        await wait_or_stop(stop_event, interval)

    logger.info("Poller stopped")
