from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .errors import ValidationError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_ALLOWED_DOMAINS = (
    "downloads.khinsider.com",
    "khinsider.com",
    "vgmtreasurechest.com",
)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

POST_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Content-Type": "application/x-www-form-urlencoded",
}

STREAM_HEADERS = {"Accept": "*/*"}

MAX_PAGES = 100
MAX_EMPTY_PAGES = 3
MAX_QUERY_LENGTH = 200
MAX_RECENT_ALBUMS = 20


@dataclass(slots=True, frozen=True)
class ScraperConfig:
    base_url: str = "https://downloads.khinsider.com"
    forum_url: str = "https://downloads.khinsider.com/forums"
    user_agent: str = DEFAULT_USER_AGENT
    rate_limit_delay_s: float = 0.5
    max_retries: int = 3
    retry_delay_s: float = 2.0
    request_timeout_s: float = 30.0
    stream_timeout_s: float = 60.0
    allowed_domains: tuple[str, ...] = field(default=DEFAULT_ALLOWED_DOMAINS)

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> ScraperConfig:
        """Build a config from ``KHINSIDER_*`` environment variables (and a .env file)."""
        load_dotenv(dotenv_path)
        overrides: dict[str, object] = {}

        for env_name, attr in (
            ("KHINSIDER_BASE_URL", "base_url"),
            ("KHINSIDER_FORUM_URL", "forum_url"),
            ("KHINSIDER_USER_AGENT", "user_agent"),
        ):
            value = os.getenv(env_name)
            if value:
                overrides[attr] = value.rstrip("/") if attr.endswith("_url") else value

        for env_name, attr, cast in (
            ("KHINSIDER_RATE_LIMIT_DELAY", "rate_limit_delay_s", float),
            ("KHINSIDER_MAX_RETRIES", "max_retries", int),
            ("KHINSIDER_RETRY_DELAY", "retry_delay_s", float),
        ):
            raw = os.getenv(env_name)
            if not raw:
                continue
            try:
                overrides[attr] = cast(raw)
            except ValueError as exc:
                raise ValidationError(f"{env_name} is not a valid number: {raw!r}") from exc

        domains = os.getenv("KHINSIDER_ALLOWED_DOMAINS")
        if domains:
            overrides["allowed_domains"] = tuple(
                d.strip().lower() for d in domains.split(",") if d.strip()
            )

        return cls(**overrides)
