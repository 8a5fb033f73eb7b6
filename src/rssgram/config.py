"""YAML configuration loading for rssgram."""

import os
import re
from datetime import timedelta
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from rssgram.models import (
    DESCRIPTION_TYPES,
    Config,
    FeedConfig,
    SilentModeConfig,
    TelegramConfig,
)
from rssgram.telegram import parse_time_of_day

DEFAULT_CONFIG_PATH = "config.yaml"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)\s*([hms])")
_UNIT_SECONDS = {"h": 3600, "m": 60, "s": 1}


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


def load_config(path: str | None = None) -> Config:
    """Read and validate the configuration file.

    The path defaults to $RSSGRAM_CONFIG, then ``config.yaml``. The
    environment variables RSSGRAM_DB_PATH, RSSGRAM_POLL_INTERVAL and
    RSSGRAM_BOT_TOKEN override the matching file values.

    Raises:
        ConfigError: If the file cannot be read or fails validation.
    """
    path = path or os.environ.get("RSSGRAM_CONFIG", DEFAULT_CONFIG_PATH)
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Could not read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    return parse_config(raw or {}, os.environ)


def parse_config(raw: dict, env: dict | None = None) -> Config:
    """Build a Config from already-decoded YAML data."""
    env = env or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")

    feeds = tuple(_parse_feed(f) for f in raw.get("feeds") or [])
    seen: set[str] = set()
    for feed in feeds:
        if feed.url in seen:
            raise ConfigError(f"Duplicate feed url: {feed.url}")
        seen.add(feed.url)

    telegram = _parse_telegram(raw.get("telegram") or {}, env)

    return Config(
        feeds=feeds,
        telegram=telegram,
        db_path=env.get("RSSGRAM_DB_PATH") or raw.get("db_path", "data.db"),
        poll_interval=_seconds(env.get("RSSGRAM_POLL_INTERVAL") or raw.get("poll_interval", 10), "poll_interval"),
        send_interval=_seconds(raw.get("send_interval", 10), "send_interval"),
        send_delay=_seconds(raw.get("send_delay", 1), "send_delay"),
    )


def _parse_feed(raw: dict) -> FeedConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"Feed entry must be a mapping, got {raw!r}")

    url = raw.get("url") or ""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"Invalid feed url: {url!r}")

    description_type = raw.get("description_type") or "raw"
    if description_type not in DESCRIPTION_TYPES:
        raise ConfigError(
            f"Feed {url}: description_type must be one of {', '.join(DESCRIPTION_TYPES)}"
        )

    interval = raw.get("interval")
    return FeedConfig(
        url=url,
        name=raw.get("name") or "",
        key=raw.get("key") or "",
        description_type=description_type,
        tags=tuple(str(t) for t in raw.get("tags") or []),
        interval=timedelta(seconds=_seconds(interval, "interval")) if interval else None,
    )


def _parse_telegram(raw: dict, env: dict) -> TelegramConfig:
    silent_raw = raw.get("silent_mode") or {}
    silent = SilentModeConfig(
        start=_time_str(silent_raw.get("start")),
        finish=_time_str(silent_raw.get("finish")),
        timezone=silent_raw.get("timezone") or "UTC",
    )
    for value in (silent.start, silent.finish):
        if value:
            try:
                parse_time_of_day(value)
            except ValueError:
                raise ConfigError(f"silent_mode time must be HH:MM:SS, got {value!r}")
    try:
        ZoneInfo(silent.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"Unknown silent_mode timezone: {silent.timezone!r}")

    return TelegramConfig(
        channel_name=str(raw.get("channel_name") or ""),
        bot_token=env.get("RSSGRAM_BOT_TOKEN") or str(raw.get("bot_token") or ""),
        silent_mode=silent,
        enable_tags=bool(raw.get("enable_tags", False)),
    )


def _time_str(value) -> str:
    # YAML 1.1 reads unquoted 23:00:00 as sexagesimal seconds.
    if isinstance(value, int) and not isinstance(value, bool):
        hours, rest = divmod(value, 3600)
        return f"{hours:02d}:{rest // 60:02d}:{rest % 60:02d}"
    return str(value or "")


def _number(value, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be seconds or a duration like 90s, 5m, 1h, got {value!r}")


def _seconds(value, name: str) -> float:
    """Read a duration: plain seconds, or a string such as "90s", "5m", "1h30m"."""
    if isinstance(value, str):
        text = value.strip().lower()
        parts = _DURATION_PART.findall(text)
        if parts and not _DURATION_PART.sub("", text).strip():
            return sum(float(n) * _UNIT_SECONDS[unit] for n, unit in parts)
    return _number(value, name)
