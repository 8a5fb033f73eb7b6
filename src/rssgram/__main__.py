"""Entry point for rssgram: python -m rssgram"""

import asyncio
import logging
import os
import signal
import sys

from rssgram.config import ConfigError, load_config
from rssgram.database import Database
from rssgram.poller import FeedPoller, start_polling
from rssgram.sender import start_sending
from rssgram.site_parser import SiteParser
from rssgram.stats import Stats
from rssgram.telegram import TelegramChannelOutput, TelegramClient

logging.basicConfig(
    level=os.environ.get("RSSGRAM_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
# Quiet noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger("rssgram")


async def main() -> None:
    """Initialize storage and run the polling and sending loops."""
    try:
        config = load_config()
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(1)

    db = Database(config.db_path)
    db.connect()

    stats = Stats()
    site_parser = SiteParser()
    client = TelegramClient(config.telegram.bot_token, config.telegram.channel_name)
    output = TelegramChannelOutput(config.telegram, client)
    poller = FeedPoller(db, config.feeds, site_parser, stats=stats)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await asyncio.gather(
            start_polling(poller, config.poll_interval, stop_event),
            start_sending(db, output, config.send_interval, config.send_delay, stats, stop_event),
        )
    finally:
        logger.info("Shutting down (%s)", stats.summary())
        client.close()
        site_parser.close()
        db.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
