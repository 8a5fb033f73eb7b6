"""Process-local counters for the polling and sending loops."""

from collections import Counter
from dataclasses import dataclass, field


@dataclass
class Stats:
    """Counters shared by the poller and sender.

    One instance is created at startup and handed to both loops.
    """

    feeds_count: int = 0
    items_ready_to_send: int = 0
    items_send_failed: int = 0
    new_items: Counter = field(default_factory=Counter)
    sent_success: Counter = field(default_factory=Counter)
    sent_error: Counter = field(default_factory=Counter)
    feed_errors: Counter = field(default_factory=Counter)

    def summary(self) -> str:
        return (
            f"feeds={self.feeds_count} new={sum(self.new_items.values())} "
            f"pending={self.items_ready_to_send} failed={self.items_send_failed} "
            f"sent={sum(self.sent_success.values())} "
            f"send_errors={sum(self.sent_error.values())} "
            f"feed_errors={sum(self.feed_errors.values())}"
        )
