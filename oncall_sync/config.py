from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()

DEFAULT_TIMEZONE = "Asia/Singapore"


@dataclass
class Settings:
    google_client_id: str
    google_client_secret: str
    pd_api_key: str
    calendar_id: str
    timezone: ZoneInfo
    google_token_file: str = ".google_oidc_token"
    oauth_port: int = 8080
    match_tolerance: timedelta = timedelta(0)
    pd_base_url: str = "https://api.pagerduty.com"
    log_level: str = "INFO"

    def missing(self) -> list[str]:
        required = {
            "GOOGLE_CLIENT_ID": self.google_client_id,
            "GOOGLE_CLIENT_SECRET": self.google_client_secret,
            "PD_API_KEY": self.pd_api_key,
        }
        return [name for name, value in required.items() if not value]


def get_timezone() -> ZoneInfo:
    tz_name = os.getenv("TIMEZONE", DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(tz_name)
    except (ValueError, KeyError):
        logging.warning("Invalid TIMEZONE %s, falling back to %s", tz_name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.warning("Invalid %s %r, using %d", name, raw, default)
        return default


def get_log_level() -> str:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        logging.warning("Invalid LOG_LEVEL %s, using INFO", level)
        return "INFO"
    return level


def get_settings() -> Settings:
    settings = Settings(
        google_client_id=os.getenv("GOOGLE_CLIENT_ID", ""),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        pd_api_key=os.getenv("PD_API_KEY", ""),
        calendar_id=os.getenv("CALENDAR_ID", "primary"),
        timezone=get_timezone(),
        google_token_file=os.getenv("GOOGLE_TOKEN_FILE", ".google_oidc_token"),
        oauth_port=_int_env("OAUTH_PORT", 8080),
        match_tolerance=timedelta(minutes=max(_int_env("MATCH_TOLERANCE_MINUTES", 0), 0)),
        pd_base_url=os.getenv("PD_BASE_URL", "https://api.pagerduty.com").rstrip("/"),
        log_level=get_log_level(),
    )
    for name in settings.missing():
        logging.warning("%s is not set", name)
    return settings


def sync_window(start: date, duration_days: int, tz: ZoneInfo) -> tuple[datetime, datetime]:
    time_min = datetime.combine(start, datetime.min.time(), tzinfo=tz)
    return time_min, time_min + timedelta(days=duration_days)
