"""Configuration loader for watch_feeds."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

from classify_items.instructions import (
    FILTER_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    SUMMARY_USER_TEMPLATE,
)
from classify_items.models import LlmSettings
from common.config import find_config_path, load_yaml
from common.errors import ConfigError
from common.http import HttpSettings
from fetch_items.models import Source, SourceKind

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent.parent.parent / "configs"
CONFIG_ENV_VAR = "FILTERFLOW_CONFIG"
API_KEY_ENV_VAR = "LLM_API_KEY"

MIN_INTERVAL_MINUTES = 2
DEFAULT_ENDPOINT = "http://localhost:1234/v1/chat/completions"
DEFAULT_USER_AGENT = "FilterFlow/1.0 (+news watcher)"


@dataclass
class Config:
    interval_minutes: int = 10
    cache_path: str = "filterflow_data"
    http: HttpSettings = field(default_factory=HttpSettings)
    llm: LlmSettings = field(default_factory=lambda: LlmSettings(DEFAULT_ENDPOINT, "local-model"))
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    feeds: list[Source] = field(default_factory=list)
    sitemaps: list[Source] = field(default_factory=list)

    @property
    def sources(self) -> list[Source]:
        return self.feeds + self.sitemaps

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60.0


def load_config(config_name_or_path: str | None = None) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_name_or_path: Name of a file in configs/ (without .yaml) or a
            path to a YAML file. If None, uses FILTERFLOW_CONFIG or "prod".

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    config_path = find_config_path(
        config_name_or_path, CONFIG_DIR, default_name="prod", env_var=CONFIG_ENV_VAR
    )
    config = _parse_config(load_yaml(config_path))
    validate_config(config)
    return config


def _section(data: dict, name: str) -> dict:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _string_list(value, name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"'{name}' must be a list")
    return [str(v).strip() for v in value if str(v).strip()]


def _parse_sources(entries, kind: SourceKind) -> list[Source]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ConfigError(f"'{kind.value}' sources must be a list")

    sources = []
    for entry in entries:
        # A bare URL is accepted as shorthand
        if isinstance(entry, str):
            entry = {"url": entry}
        if not isinstance(entry, dict) or not entry.get("url"):
            raise ConfigError(f"Every {kind.value} source needs a url: {entry!r}")
        url = str(entry["url"]).strip()
        sources.append(
            Source(
                name=str(entry.get("name") or urlsplit(url).netloc or url),
                url=url,
                kind=kind,
                expire_alerts=bool(entry.get("expire_alerts", False)),
            )
        )
    return sources


def _parse_config(data: dict) -> Config:
    """Parse config dictionary into Config object."""
    general = _section(data, "general")
    llm_data = _section(data, "llm")
    http_data = _section(data, "http")
    filter_data = _section(data, "filter")
    proxy_data = _section(data, "proxy")

    try:
        proxy = None
        if proxy_data.get("enabled", False):
            proxy = str(proxy_data.get("address") or "").strip() or None
            if proxy is None:
                raise ConfigError("proxy.enabled is set but proxy.address is empty")

        http = HttpSettings(
            user_agent=general.get("user_agent", DEFAULT_USER_AGENT),
            proxy=proxy,
            timeout=float(http_data.get("timeout", 20.0)),
            max_attempts=int(http_data.get("max_attempts", 4)),
            backoff_seconds=float(http_data.get("backoff_seconds", 1.0)),
            max_backoff_seconds=float(http_data.get("max_backoff_seconds", 30.0)),
            fetch_concurrency=int(http_data.get("fetch_concurrency", 8)),
            llm_concurrency=int(http_data.get("llm_concurrency", 1)),
        )

        llm = LlmSettings(
            endpoint=str(general.get("endpoint", DEFAULT_ENDPOINT)).strip(),
            model=str(general.get("model", "local-model")),
            api_key=os.environ.get(API_KEY_ENV_VAR) or llm_data.get("api_key", "not-needed"),
            filter_max_tokens=int(llm_data.get("filter_max_tokens", 5)),
            filter_temperature=float(llm_data.get("filter_temperature", 0.0)),
            summary_max_tokens=int(llm_data.get("summary_max_tokens", 300)),
            summary_temperature=float(llm_data.get("summary_temperature", 0.3)),
            filter_system_prompt=llm_data.get("filter_system_prompt", FILTER_SYSTEM_PROMPT),
            summary_system_prompt=llm_data.get("summary_system_prompt", SUMMARY_SYSTEM_PROMPT),
            summary_user_template=llm_data.get("summary_user_template", SUMMARY_USER_TEMPLATE),
            filter_timeout=float(llm_data.get("filter_timeout", 10.0)),
            summary_timeout=float(llm_data.get("summary_timeout", 30.0)),
            show_latency=bool(general.get("show_latency", False)),
        )

        return Config(
            interval_minutes=int(general.get("interval_minutes", 10)),
            cache_path=str(general.get("cache_path", "filterflow_data")),
            http=http,
            llm=llm,
            include=_string_list(filter_data.get("include"), "filter.include"),
            exclude=_string_list(filter_data.get("exclude"), "filter.exclude"),
            feeds=_parse_sources(data.get("feeds"), SourceKind.RSS),
            sitemaps=_parse_sources(data.get("sitemaps"), SourceKind.SITEMAP),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc


def _is_http_url(url: str) -> bool:
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.hostname)


def validate_config(config: Config) -> None:
    """Reject configurations the watcher cannot run with.

    Raises:
        ConfigError: On the first invalid setting found.
    """
    if config.interval_minutes < MIN_INTERVAL_MINUTES:
        raise ConfigError(
            f"interval_minutes must be at least {MIN_INTERVAL_MINUTES}, got {config.interval_minutes}"
        )

    if not _is_http_url(config.llm.endpoint):
        raise ConfigError(f"Invalid LLM endpoint: {config.llm.endpoint!r}")

    if config.http.proxy is not None and not _is_http_url(config.http.proxy):
        raise ConfigError(f"Invalid proxy address: {config.http.proxy!r}")

    for source in config.sources:
        if not _is_http_url(source.url):
            raise ConfigError(f"Invalid {source.kind.value} URL: {source.url!r}")

    if not config.include:
        raise ConfigError("filter.include must list at least one topic")

    for name in ("max_attempts", "fetch_concurrency", "llm_concurrency"):
        if getattr(config.http, name) < 1:
            raise ConfigError(f"http.{name} must be at least 1")

    if config.http.timeout <= 0:
        raise ConfigError("http.timeout must be positive")

    template = config.llm.summary_user_template
    if "{title}" not in template or "{description}" not in template:
        logger.warning(
            "Summary template lacks {title} or {description}; missing fields will be appended"
        )

    if not config.sources:
        logger.warning("No feeds or sitemaps configured")
