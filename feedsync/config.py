"""Environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

REQUIRED_KEYS = ("SHOP_DOMAIN", "SHOPIFY_ACCESS_TOKEN", "FEED_URL")
LOOKUP_STRATEGIES = ("tag", "title", "sku")
TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(RuntimeError):
    pass


@dataclass(slots=True)
class Settings:
    shop_domain: str
    access_token: str
    feed_url: str
    api_version: str = "2024-07"
    batch_size: int = 50
    batch_pause: float = 1.5
    requests_per_second: float = 2.0
    max_attempts: int = 5
    lookup_strategy: str = "tag"
    cleanup_images: bool = False
    publish: bool = False
    finish_in_family_key: bool = False
    finish_option: bool = False
    debug: bool = False
    default_vendor: str = "SoleDerva"
    report_dir: str | None = None


def _flag(environ: Mapping[str, str], key: str) -> bool:
    return environ.get(key, "").strip().lower() in TRUTHY


def _number(environ: Mapping[str, str], key: str, default: float, cast=float):
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from exc


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    missing = [key for key in REQUIRED_KEYS if not env.get(key, "").strip()]
    if missing:
        raise ConfigError(f"Missing configuration: {', '.join(missing)}")
    strategy = env.get("LOOKUP_STRATEGY", "tag").strip().lower() or "tag"
    if strategy not in LOOKUP_STRATEGIES:
        raise ConfigError(f"LOOKUP_STRATEGY must be one of {', '.join(LOOKUP_STRATEGIES)}")
    return Settings(
        shop_domain=env["SHOP_DOMAIN"].strip(),
        access_token=env["SHOPIFY_ACCESS_TOKEN"].strip(),
        feed_url=env["FEED_URL"].strip(),
        api_version=env.get("SHOPIFY_API_VERSION", "").strip() or "2024-07",
        batch_size=max(1, _number(env, "BATCH_SIZE", 50, int)),
        batch_pause=_number(env, "BATCH_PAUSE_SECONDS", 1.5),
        requests_per_second=_number(env, "REQUESTS_PER_SECOND", 2.0),
        max_attempts=max(1, _number(env, "MAX_ATTEMPTS", 5, int)),
        lookup_strategy=strategy,
        cleanup_images=_flag(env, "CLEANUP_IMAGES"),
        publish=_flag(env, "PUBLISH"),
        finish_in_family_key=_flag(env, "FINISH_IN_FAMILY_KEY"),
        finish_option=_flag(env, "FINISH_OPTION"),
        debug=_flag(env, "DEBUG"),
        default_vendor=env.get("DEFAULT_VENDOR", "").strip() or "SoleDerva",
        report_dir=env.get("REPORT_DIR", "").strip() or None,
    )
