"""Telegram channel output: Bot API client, message rendering, quiet hours."""

import html
import logging
from datetime import datetime, time, timezone
from typing import Protocol
from zoneinfo import ZoneInfo

import httpx

from rssgram.models import FeedItem, TelegramConfig
from rssgram.text import ellipsis, strip_tags

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org"
DEFAULT_TIMEOUT = 30.0
DESCRIPTION_LIMIT = 800
CAPTION_LIMIT = 1024


class TelegramError(Exception):
    """Raised when the Bot API rejects a request or cannot be reached."""


class TooManyRequestsError(TelegramError):
    """Raised on HTTP 429 from the Bot API."""


class BadRequestError(TelegramError):
    """Raised on HTTP 400 from the Bot API."""


class Transport(Protocol):
    def send_message(
        self, text: str, disable_link_preview: bool = True, disable_notification: bool = False
    ) -> None: ...

    def send_photo(self, photo_url: str, caption: str, disable_notification: bool = False) -> None: ...


class TelegramClient:
    """Minimal Bot API client posting HTML messages to one chat."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        client: httpx.Client | None = None,
        base_url: str = API_URL,
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.base_url = base_url
        self.client = client or httpx.Client(timeout=DEFAULT_TIMEOUT)

    def close(self) -> None:
        self.client.close()

    def send_message(
        self, text: str, disable_link_preview: bool = True, disable_notification: bool = False
    ) -> None:
        self._call("sendMessage", {
            "chat_id": self.chat_id,
            "parse_mode": "HTML",
            "text": text,
            "link_preview_options": {"is_disabled": disable_link_preview},
            "disable_notification": disable_notification,
        })

    def send_photo(self, photo_url: str, caption: str, disable_notification: bool = False) -> None:
        self._call("sendPhoto", {
            "chat_id": self.chat_id,
            "photo": photo_url,
            "caption": caption,
            "parse_mode": "HTML",
            "disable_notification": disable_notification,
        })

    def _call(self, method: str, payload: dict) -> None:
        url = f"{self.base_url}/bot{self.bot_token}/{method}"
        try:
            response = self.client.post(url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TelegramError(f"{method} request failed: {e}") from e

        logger.debug("%s -> %d %s", method, response.status_code, response.text)

        if response.status_code == 429:
            raise TooManyRequestsError(f"{method}: too many requests")
        if response.status_code == 400:
            raise BadRequestError(f"{method}: bad request: {_api_description(response)}")
        if response.status_code != 200:
            raise TelegramError(f"{method}: return status code {response.status_code}")


def _api_description(response: httpx.Response) -> str:
    try:
        return response.json().get("description", "")
    except ValueError:
        return response.text


def parse_time_of_day(value: str) -> time:
    """Parse an HH:MM:SS string."""
    return datetime.strptime(value, "%H:%M:%S").time()


def is_silent_mode(start: str, finish: str, tz_name: str, now: datetime) -> bool:
    """Whether notifications should be muted at the instant now.

    For a same-day window both edges are exclusive. For a window crossing
    midnight only the gap strictly between finish and start is loud, so
    both edges are silent. Equal start and finish mute the whole day.

    Raises:
        ValueError: On a malformed time or unknown timezone.
    """
    if not start or not finish:
        return False

    start_time = parse_time_of_day(start)
    finish_time = parse_time_of_day(finish)

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(ZoneInfo(tz_name)).time()

    if finish_time > start_time:
        return start_time < local < finish_time
    if finish_time < start_time:
        return not (finish_time < local < start_time)
    return True


class TelegramChannelOutput:
    """Renders feed items and pushes them to the configured channel."""

    def __init__(self, config: TelegramConfig, client: Transport):
        self.config = config
        self.client = client

    def is_silent_mode(self, now: datetime | None = None) -> bool:
        silent = self.config.silent_mode
        return is_silent_mode(
            silent.start,
            silent.finish,
            silent.timezone,
            now or datetime.now(timezone.utc),
        )

    def render(self, item: FeedItem, description_limit: int = DESCRIPTION_LIMIT) -> str:
        feed_title = f"<b>[{html.escape(item.feed_title)}]</b>"
        item_title = (
            f'<a href="{html.escape(item.link, quote=True)}">{html.escape(item.title)}</a>'
        )
        description = html.escape(
            ellipsis(strip_tags(item.description), description_limit), quote=False
        )

        msg = f"{feed_title}\n\n{item_title}\n\n<blockquote>{description}</blockquote>"

        if self.config.enable_tags and item.tags:
            msg += "\n\n" + " ".join("#" + tag.replace(" ", "_") for tag in item.tags)
        return msg

    def render_caption(self, item: FeedItem) -> str | None:
        """Render item as a photo caption, or None if it cannot fit.

        Telegram limits captions to CAPTION_LIMIT visible characters, so the
        description is shortened as far as needed.
        """
        msg = self.render(item)
        overflow = len(strip_tags(msg)) - CAPTION_LIMIT
        if overflow <= 0:
            return msg
        # +1 for the ellipsis character
        msg = self.render(item, DESCRIPTION_LIMIT - overflow - 1)
        if len(strip_tags(msg)) > CAPTION_LIMIT:
            return None
        return msg

    def push(self, item: FeedItem, now: datetime | None = None) -> None:
        """Send one item. Raises TelegramError if the channel refuses it.

        Items with an image go out as a photo with the message as caption,
        unless the message cannot be made short enough for a caption.
        """
        disable_notification = self.is_silent_mode(now)
        caption = self.render_caption(item) if item.image_url else None

        if caption is not None:
            self.client.send_photo(item.image_url, caption, disable_notification)
        else:
            msg = self.render(item)
            self.client.send_message(
                msg, disable_link_preview=True, disable_notification=disable_notification
            )
