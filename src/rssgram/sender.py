"""Background sending loop: deliver pending items to the channel."""

import asyncio
import logging
from typing import Protocol

from rssgram.database import StorageError
from rssgram.models import FeedItem
from rssgram.poller import wait_or_stop
from rssgram.stats import Stats
from rssgram.telegram import TelegramChannelOutput, TelegramError

logger = logging.getLogger(__name__)

DEFAULT_SEND_INTERVAL = 10
DEFAULT_SEND_DELAY = 1.0


class DeliveryRepository(Protocol):
    def get_items_pending_delivery(self, limit: int = 0) -> list[FeedItem]: ...

    def count_failed(self) -> int: ...

    def mark_sent(self, item_id: str) -> None: ...

    def increment_failed_counter(self, item_id: str) -> None: ...


async def deliver_once(
    db: DeliveryRepository,
    output: TelegramChannelOutput,
    delay: float = DEFAULT_SEND_DELAY,
    stats: Stats | None = None,
    limit: int = 0,
    stop_event: asyncio.Event | None = None,
) -> int:
    """Try to send every pending item once, oldest first.

    Items are sent one at a time with delay seconds between them. A failed
    item stays pending with its failure counter bumped; the rest of the
    batch is still attempted. Once stop_event is set no further item is
    sent and the remainder stays pending.

    Returns:
        Count of items delivered.
    """
    stats = stats or Stats()
    items = db.get_items_pending_delivery(limit)
    stats.items_ready_to_send = len(items)
    stats.items_send_failed = db.count_failed()
    logger.debug("Got %d items to send", len(items))

    stop_event = stop_event or asyncio.Event()
    sent = 0
    for index, item in enumerate(items):
        if index and delay > 0:
            await wait_or_stop(stop_event, delay)
        if stop_event.is_set():
            logger.info("Stopping delivery, %d items left pending", len(items) - index)
            break

        logger.debug("Sending %s ...", item.id)
        try:
            await asyncio.to_thread(output.push, item)
        except (TelegramError, ValueError) as e:
            logger.error("Failed to send item %s: %s", item.id, e)
            _record_failure(db, stats, item)
            continue
        except Exception as e:
            logger.exception("Unexpected error sending item %s: %s", item.id, e)
            _record_failure(db, stats, item)
            continue

        try:
            db.mark_sent(item.id)
        except StorageError as e:
            logger.error("Failed to set is_sent for item %s: %s", item.id, e)
            continue
        stats.sent_success[item.feed_title] += 1
        sent += 1

    return sent


def _record_failure(db: DeliveryRepository, stats: Stats, item: FeedItem) -> None:
    stats.sent_error[item.feed_title] += 1
    try:
        db.increment_failed_counter(item.id)
    except StorageError as e:
        logger.error("Failed to increment failed counter for %s: %s", item.id, e)


async def start_sending(
    db: DeliveryRepository,
    output: TelegramChannelOutput,
    interval: float = DEFAULT_SEND_INTERVAL,
    delay: float = DEFAULT_SEND_DELAY,
    stats: Stats | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run the sending loop until stop_event is set."""
    stop_event = stop_event or asyncio.Event()
    stats = stats or Stats()
    logger.info("Sender started (interval: %ss)", interval)

    while not stop_event.is_set():
        try:
            sent = await deliver_once(db, output, delay, stats, stop_event=stop_event)
            if sent > 0:
                logger.info("Send cycle complete: %d items sent (%s)", sent, stats.summary())
        except Exception as e:
            logger.error("Send cycle failed: %s", e)

        await wait_or_stop(stop_event, interval)

    logger.info("Sender stopped")
