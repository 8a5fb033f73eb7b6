"""Tests for the Telegram output: quiet hours, rendering and the API client."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from rssgram.models import FeedItem, SilentModeConfig, TelegramConfig
from rssgram.telegram import (
    CAPTION_LIMIT,
    BadRequestError,
    TelegramChannelOutput,
    TelegramClient,
    TelegramError,
    TooManyRequestsError,
    is_silent_mode,
)
from rssgram.text import strip_tags

from conftest import FakeTransport


def at(clock: str, tz=timezone.utc) -> datetime:
    h, m, s = (int(p) for p in clock.split(":"))
    return datetime(2026, 2, 13, h, m, s, tzinfo=tz)


@pytest.mark.parametrize("now, expected", [
    ("09:00:00", False),
    ("10:00:00", False),
    ("10:00:01", True),
    ("12:30:00", True),
    ("14:59:59", True),
    ("15:00:00", False),
    ("15:00:01", False),
])
def test_same_day_window(now, expected):
    assert is_silent_mode("10:00:00", "15:00:00", "UTC", at(now)) is expected


@pytest.mark.parametrize("now, expected", [
    ("22:59:00", False),
    ("23:00:00", True),
    ("23:00:01", True),
    ("00:00:00", True),
    ("05:59:59", True),
    ("06:00:00", True),
    ("06:00:01", False),
    ("12:00:00", False),
])
def test_window_crossing_midnight(now, expected):
    assert is_silent_mode("23:00:00", "06:00:00", "UTC", at(now)) is expected


def test_window_uses_configured_timezone():
    # 20:30 UTC is 23:30 in Moscow (UTC+3).
    assert is_silent_mode("23:00:00", "06:00:00", "Europe/Moscow", at("20:30:00")) is True
    assert is_silent_mode("23:00:00", "06:00:00", "Europe/Moscow", at("03:30:00")) is False


def test_empty_window_is_never_silent():
    assert is_silent_mode("", "06:00:00", "UTC", at("03:00:00")) is False
    assert is_silent_mode("23:00:00", "", "UTC", at("03:00:00")) is False


def test_equal_edges_are_always_silent():
    assert is_silent_mode("08:00:00", "08:00:00", "UTC", at("15:00:00")) is True


def test_bad_window_raises():
    with pytest.raises(ValueError):
        is_silent_mode("25:00", "06:00:00", "UTC", at("03:00:00"))


def make_output(enable_tags=False, silent=SilentModeConfig(), transport=None):
    config = TelegramConfig(
        channel_name="@chan", bot_token="t", silent_mode=silent, enable_tags=enable_tags
    )
    return TelegramChannelOutput(config, transport or FakeTransport())


def make_item(**kwargs) -> FeedItem:
    defaults = dict(
        feed_title="Feed & Co",
        title="Title <1>",
        link="https://example.com/a?x=1&y=2",
        description="<p>Some <b>bold</b> text &amp; more</p>",
    )
    defaults.update(kwargs)
    return FeedItem.create(**defaults)


class TestRender:
    def test_layout_and_escaping(self):
        msg = make_output().render(make_item())

        assert msg == (
            "<b>[Feed &amp; Co]</b>\n\n"
            '<a href="https://example.com/a?x=1&amp;y=2">Title &lt;1&gt;</a>\n\n'
            "<blockquote>Some bold text &amp; more</blockquote>"
        )

    def test_long_description_is_truncated(self):
        msg = make_output().render(make_item(description="word " * 300))

        quote = msg.split("<blockquote>")[1].split("</blockquote>")[0]
        assert quote.endswith("…")
        assert len(quote) <= 803

    def test_tags_line(self):
        item = make_item(tags=["news", "big tech"])

        assert make_output(enable_tags=True).render(item).endswith("\n\n#news #big_tech")
        assert "#news" not in make_output(enable_tags=False).render(item)

    def test_no_tags_line_without_tags(self):
        msg = make_output(enable_tags=True).render(make_item())
        assert msg.endswith("</blockquote>")


class TestPush:
    def test_text_message_without_image(self):
        transport = FakeTransport()
        make_output(transport=transport).push(make_item())

        assert len(transport.messages) == 1
        assert transport.photos == []
        assert transport.messages[0]["disable_link_preview"] is True
        assert transport.messages[0]["disable_notification"] is False

    def test_photo_with_caption(self):
        transport = FakeTransport()
        make_output(transport=transport).push(make_item(image_url="https://example.com/i.png"))

        assert transport.messages == []
        assert transport.photos[0]["photo"] == "https://example.com/i.png"
        assert transport.photos[0]["caption"].startswith("<b>[Feed &amp; Co]</b>")

    def test_silent_flag_follows_window(self):
        transport = FakeTransport()
        output = make_output(
            transport=transport,
            silent=SilentModeConfig("23:00:00", "06:00:00", "UTC"),
        )

        output.push(make_item(title="night"), now=at("02:00:00"))
        output.push(make_item(title="day"), now=at("12:00:00"))

        assert [m["disable_notification"] for m in transport.messages] == [True, False]

    def test_long_caption_is_shortened_to_fit(self):
        transport = FakeTransport()
        item = make_item(
            title="T" * 300, description="word " * 300, image_url="https://example.com/i.png"
        )

        make_output(transport=transport).push(item)

        caption = transport.photos[0]["caption"]
        assert len(strip_tags(caption)) <= CAPTION_LIMIT
        assert caption.endswith("…</blockquote>")

    def test_oversized_caption_is_sent_as_text(self):
        transport = FakeTransport()
        item = make_item(title="T" * 1100, image_url="https://example.com/i.png")

        make_output(transport=transport).push(item)

        assert transport.photos == []
        assert "T" * 1100 in transport.messages[0]["text"]

    def test_transport_error_propagates(self):
        transport = FakeTransport(fail_marker="Title", error=TelegramError("boom"))
        with pytest.raises(TelegramError):
            make_output(transport=transport).push(make_item())


class TestClient:
    def make_client(self, status=200, body='{"ok": true}', requests=None):
        def handler(request):
            if requests is not None:
                requests.append(request)
            return httpx.Response(status, text=body)

        return TelegramClient(
            "123:abc", "@chan", client=httpx.Client(transport=httpx.MockTransport(handler))
        )

    def test_send_message_payload(self):
        requests = []
        self.make_client(requests=requests).send_message(
            "<b>hi</b>", disable_link_preview=True, disable_notification=True
        )

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.telegram.org/bot123:abc/sendMessage"
        assert json.loads(request.content) == {
            "chat_id": "@chan",
            "parse_mode": "HTML",
            "text": "<b>hi</b>",
            "link_preview_options": {"is_disabled": True},
            "disable_notification": True,
        }

    def test_send_photo_payload(self):
        requests = []
        self.make_client(requests=requests).send_photo("https://x/i.png", "cap", False)

        assert str(requests[0].url).endswith("/sendPhoto")
        assert json.loads(requests[0].content) == {
            "chat_id": "@chan",
            "photo": "https://x/i.png",
            "caption": "cap",
            "parse_mode": "HTML",
            "disable_notification": False,
        }

    @pytest.mark.parametrize("status, error", [
        (429, TooManyRequestsError),
        (400, BadRequestError),
        (500, TelegramError),
        (403, TelegramError),
    ])
    def test_error_statuses(self, status, error):
        client = self.make_client(status=status, body='{"ok": false, "description": "nope"}')
        with pytest.raises(error):
            client.send_message("x")

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        client = TelegramClient(
            "t", "@chan", client=httpx.Client(transport=httpx.MockTransport(handler))
        )
        with pytest.raises(TelegramError, match="request failed"):
            client.send_photo("https://x/i.png", "cap")

    def test_malformed_url_is_a_telegram_error(self):
        client = TelegramClient(
            "bad\ntoken", "@chan",
            client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200))),
        )
        with pytest.raises(TelegramError, match="request failed"):
            client.send_message("x")
