"""Environment-driven settings.

Every knob has a default that matches the deployed food-court app, so
``Settings.from_env()`` works with an empty environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .errors import InvalidArgumentError
from .models import DEFAULT_ICON_PATH

DEFAULT_MANIFEST = (
    "/",
    "/customer/home.html",
    "/customer/menu.html",
    "/customer/order-tracking.html",
    "/css/main.css",
    "/css/customer.css",
    "/css/notifications.css",
    "/js/app.js",
    "/js/notifications.js",
)


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgumentError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidArgumentError(f"{name} must be a number, got {raw!r}") from None


def _env_list(env: Mapping[str, str], name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = env.get(name)
    if not raw:
        return default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    origin: str = "http://localhost:8000"
    cache_prefix: str = "food-court-shell-"
    cache_version: str = "v1"
    manifest: tuple[str, ...] = field(default=DEFAULT_MANIFEST)
    offline_path: str = "/offline.html"
    orders_cache: str = "orders-cache"
    sync_tag: str = "sync-orders"
    client_scope: str = "/customer/"
    tracking_path: str = "/customer/order-tracking.html"
    icon: str = DEFAULT_ICON_PATH
    badge: str = DEFAULT_ICON_PATH
    max_visible: int = 3
    duration_ms: int = 5000
    fetch_timeout: float = 10.0
    bridge_endpoint: str = "localhost:50070"
    feed_endpoint: str = "localhost:50071"

    @property
    def cache_name(self) -> str:
        """The live cache generation tag."""
        return f"{self.cache_prefix}{self.cache_version}"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> Settings:
        """Load settings from ORDERLIVE_* environment variables.

        Raises:
            InvalidArgumentError: If a numeric variable does not parse.
        """
        env = os.environ if env is None else env
        base = cls()
        max_visible = _env_int(env, "ORDERLIVE_MAX_VISIBLE", base.max_visible)
        if max_visible < 1:
            raise InvalidArgumentError("ORDERLIVE_MAX_VISIBLE must be at least 1")
        return cls(
            origin=env.get("ORDERLIVE_ORIGIN", base.origin),
            cache_prefix=env.get("ORDERLIVE_CACHE_PREFIX", base.cache_prefix),
            cache_version=env.get("ORDERLIVE_CACHE_VERSION", base.cache_version),
            manifest=_env_list(env, "ORDERLIVE_MANIFEST", base.manifest),
            offline_path=env.get("ORDERLIVE_OFFLINE_PATH", base.offline_path),
            orders_cache=env.get("ORDERLIVE_ORDERS_CACHE", base.orders_cache),
            sync_tag=env.get("ORDERLIVE_SYNC_TAG", base.sync_tag),
            client_scope=env.get("ORDERLIVE_CLIENT_SCOPE", base.client_scope),
            tracking_path=env.get("ORDERLIVE_TRACKING_PATH", base.tracking_path),
            icon=env.get("ORDERLIVE_ICON", base.icon),
            badge=env.get("ORDERLIVE_BADGE", base.badge),
            max_visible=max_visible,
            duration_ms=_env_int(env, "ORDERLIVE_DURATION_MS", base.duration_ms),
            fetch_timeout=_env_float(env, "ORDERLIVE_FETCH_TIMEOUT", base.fetch_timeout),
            bridge_endpoint=env.get("ORDERLIVE_BRIDGE_ENDPOINT", base.bridge_endpoint),
            feed_endpoint=env.get("ORDERLIVE_FEED_ENDPOINT", base.feed_endpoint),
        )
