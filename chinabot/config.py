"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from chinabot.models import Plan

DEFAULT_LOVER_NAME_PATTERN = r"しょうた|ショウタ|shota|imadon"
DEFAULT_LLM_BASE_URL = "https://api.openai.com/v1"
DEFAULT_LLM_MODEL = "gpt-4o-mini"
DEFAULT_BACKOFF_SCHEDULE = (20, 80, 1800)


class ConfigError(RuntimeError):
    """Raised when the environment does not describe a usable configuration."""


@dataclass(frozen=True, slots=True)
class QuotaConfig:
    """Daily turn limits per plan."""

    free: int = 50
    tier1: int = 400
    tier2: int = 1500
    tier3: int = 100_000

    def limit_for(self, plan: Plan) -> int:
        return {
            Plan.FREE: self.free,
            Plan.TIER1: self.tier1,
            Plan.TIER2: self.tier2,
            Plan.TIER3: self.tier3,
        }[plan]


@dataclass(frozen=True, slots=True)
class LLMConfig:
    """Settings for the chat-completion backend."""

    api_key: Optional[str] = None
    base_url: str = DEFAULT_LLM_BASE_URL
    model: str = DEFAULT_LLM_MODEL
    timeout_seconds: float = 8.0
    max_tokens: int = 200
    temperature: float = 0.8
    backoff_schedule: tuple[int, ...] = DEFAULT_BACKOFF_SCHEDULE
    history_turns: int = 6

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass(slots=True)
class Config:
    """Top-level application configuration."""

    channel_secret: str
    channel_access_token: str
    host: str = "0.0.0.0"
    port: int = 3000
    timezone: tzinfo = timezone.utc
    store_backend: str = "sqlite"
    store_path: Path = Path("chinabot.db")
    store_retry_after_seconds: int = 30
    owner_user_ids: frozenset[str] = frozenset()
    lover_name_pattern: str = DEFAULT_LOVER_NAME_PATTERN
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    status_every_n_turns: int = 10
    low_quota_warning: int = 3
    llm: LLMConfig = field(default_factory=LLMConfig)
    checkout_urls: dict[Plan, str] = field(default_factory=dict)
    billing_webhook_secret: Optional[str] = None
    broadcast_secret: Optional[str] = None
    admin_token: Optional[str] = None
    enable_scheduler: bool = False
    random_talk_rate: float = 0.5
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_noise: str = "low"

    @property
    def billing_enabled(self) -> bool:
        return bool(self.checkout_urls)


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if value is None:
        raise ConfigError(f"Environment variable {name} is required")
    stripped = value.strip()
    if not stripped:
        raise ConfigError(f"Environment variable {name} must not be empty")
    return stripped


def _optional_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    if not stripped:
        return default
    return stripped


def _parse_int_env(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = _optional_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer value") from None
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be greater than or equal to {minimum}")
    return value


def _parse_float_env(
    name: str,
    default: float,
    *,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
) -> float:
    raw = _optional_env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number") from None
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be greater than or equal to {minimum}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be less than or equal to {maximum}")
    return value


def _parse_bool_env(name: str, default: bool) -> bool:
    raw = _optional_env(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _parse_timezone(name: str) -> tzinfo:
    if name.upper() in {"UTC", "Z"}:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"TIMEZONE {name!r} is not a known IANA timezone") from None


def _parse_id_list(raw: Optional[str]) -> frozenset[str]:
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def _parse_backoff_schedule(raw: Optional[str]) -> tuple[int, ...]:
    if raw is None:
        return DEFAULT_BACKOFF_SCHEDULE
    steps: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            seconds = int(part)
        except ValueError:
            raise ConfigError("LLM_BACKOFF_SCHEDULE must be a comma separated list of seconds") from None
        if seconds <= 0:
            raise ConfigError("LLM_BACKOFF_SCHEDULE entries must be positive")
        steps.append(seconds)
    if not steps:
        raise ConfigError("LLM_BACKOFF_SCHEDULE must contain at least one entry")
    return tuple(steps)


def _parse_checkout_urls() -> dict[Plan, str]:
    urls: dict[Plan, str] = {}
    for plan in (Plan.TIER1, Plan.TIER2, Plan.TIER3):
        name = f"CHECKOUT_URL_{plan.name}"
        value = _optional_env(name)
        if value is None:
            continue
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ConfigError(f"{name} must be a valid HTTP(S) URL")
        urls[plan] = value
    return urls


def load_config(env_file: str | None = None) -> Config:
    """Load configuration from the provided .env file (or default location)."""

    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    channel_secret = _require_env("LINE_CHANNEL_SECRET")
    channel_access_token = _require_env("LINE_CHANNEL_ACCESS_TOKEN")

    store_backend = (_optional_env("STORE_BACKEND", "sqlite") or "sqlite").lower()
    if store_backend not in {"sqlite", "memory"}:
        raise ConfigError("STORE_BACKEND must be either 'sqlite' or 'memory'")

    lover_name_pattern = _optional_env("LOVER_NAME_PATTERN", DEFAULT_LOVER_NAME_PATTERN)
    try:
        re.compile(lover_name_pattern or "")
    except re.error:
        raise ConfigError("LOVER_NAME_PATTERN must be a valid regular expression") from None

    quota = QuotaConfig(
        free=_parse_int_env("QUOTA_FREE", 50, minimum=1),
        tier1=_parse_int_env("QUOTA_TIER1", 400, minimum=1),
        tier2=_parse_int_env("QUOTA_TIER2", 1500, minimum=1),
        tier3=_parse_int_env("QUOTA_TIER3", 100_000, minimum=1),
    )

    llm = LLMConfig(
        api_key=_optional_env("LLM_API_KEY"),
        base_url=(_optional_env("LLM_BASE_URL", DEFAULT_LLM_BASE_URL) or DEFAULT_LLM_BASE_URL).rstrip("/"),
        model=_optional_env("LLM_MODEL", DEFAULT_LLM_MODEL) or DEFAULT_LLM_MODEL,
        timeout_seconds=_parse_float_env("LLM_TIMEOUT_SEC", 8.0, minimum=0.5, maximum=25.0),
        max_tokens=_parse_int_env("LLM_MAX_TOKENS", 200, minimum=16),
        temperature=_parse_float_env("LLM_TEMPERATURE", 0.8, minimum=0.0, maximum=2.0),
        backoff_schedule=_parse_backoff_schedule(_optional_env("LLM_BACKOFF_SCHEDULE")),
        history_turns=_parse_int_env("HISTORY_TURNS", 6, minimum=0),
    )

    return Config(
        channel_secret=channel_secret,
        channel_access_token=channel_access_token,
        host=_optional_env("HOST", "0.0.0.0") or "0.0.0.0",
        port=_parse_int_env("PORT", 3000, minimum=1),
        timezone=_parse_timezone(_optional_env("TIMEZONE", "Asia/Tokyo") or "Asia/Tokyo"),
        store_backend=store_backend,
        store_path=Path(_optional_env("STORE_PATH", "chinabot.db") or "chinabot.db"),
        store_retry_after_seconds=_parse_int_env("STORE_RETRY_AFTER_SEC", 30, minimum=1),
        owner_user_ids=_parse_id_list(_optional_env("OWNER_USER_IDS")),
        lover_name_pattern=lover_name_pattern or DEFAULT_LOVER_NAME_PATTERN,
        quota=quota,
        status_every_n_turns=_parse_int_env("STATUS_EVERY_N_TURNS", 10, minimum=1),
        low_quota_warning=_parse_int_env("LOW_QUOTA_WARNING", 3, minimum=0),
        llm=llm,
        checkout_urls=_parse_checkout_urls(),
        billing_webhook_secret=_optional_env("BILLING_WEBHOOK_SECRET"),
        broadcast_secret=_optional_env("BROADCAST_SECRET"),
        admin_token=_optional_env("ADMIN_TOKEN"),
        enable_scheduler=_parse_bool_env("ENABLE_SCHEDULER", False),
        random_talk_rate=_parse_float_env("RANDOM_TALK_RATE", 0.5, minimum=0.0, maximum=1.0),
        log_level=(_optional_env("LOG_LEVEL", "INFO") or "INFO").upper(),
        log_dir=Path(_optional_env("LOG_DIR", "logs") or "logs"),
        log_noise=(_optional_env("LOG_NOISE", "low") or "low").lower(),
    )


__all__ = ["Config", "ConfigError", "LLMConfig", "QuotaConfig", "load_config"]
