"""Factory for creating the market relay from environment variables."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from .assets import DEFAULT_CHAIN
from .feed import DEFAULT_HEARTBEAT_INTERVAL, DEFAULT_RECONNECT_DELAY, DEFAULT_WS_URL
from .mobula_client import DEFAULT_API_URL, MobulaGateway
from .relay import MarketRelay

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RelaySettings:
    """Relay configuration. See ``from_env`` for the variable names."""

    api_key: str = ""
    api_url: str = DEFAULT_API_URL
    ws_url: str = DEFAULT_WS_URL
    http_timeout: float = 10.0
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    default_chain: str = DEFAULT_CHAIN

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RelaySettings:
        """Read settings from the environment.

        - MOBULA_API_KEY            provider key (empty → unauthenticated, warned)
        - MOBULA_API_URL            HTTP base URL
        - MOBULA_WS_URL             feed websocket URL
        - RELAY_HTTP_TIMEOUT        seconds per HTTP request
        - RELAY_HEARTBEAT_INTERVAL  seconds between feed pings
        - RELAY_RECONNECT_DELAY     seconds before reconnecting the feed
        - RELAY_DEFAULT_CHAIN       chain used for discovery and fallback pools
        """
        env = os.environ if environ is None else environ
        return cls(
            api_key=env.get("MOBULA_API_KEY", "").strip(),
            api_url=env.get("MOBULA_API_URL", "").strip() or DEFAULT_API_URL,
            ws_url=env.get("MOBULA_WS_URL", "").strip() or DEFAULT_WS_URL,
            http_timeout=_positive_float(env, "RELAY_HTTP_TIMEOUT", 10.0),
            heartbeat_interval=_positive_float(env, "RELAY_HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL),
            reconnect_delay=_positive_float(env, "RELAY_RECONNECT_DELAY", DEFAULT_RECONNECT_DELAY),
            default_chain=env.get("RELAY_DEFAULT_CHAIN", "").strip() or DEFAULT_CHAIN,
        )


def _positive_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring %s=%r: must be positive, using %s", name, raw, default)
        return default
    return value


def create_market_relay(settings: RelaySettings | None = None) -> MarketRelay:
    """Create an unstarted relay. Caller must await relay.start()."""
    settings = settings or RelaySettings.from_env()

    if not settings.api_key:
        logger.warning("MOBULA_API_KEY is not set; provider requests will be unauthenticated")

    gateway = MobulaGateway(
        api_key=settings.api_key,
        base_url=settings.api_url,
        timeout=settings.http_timeout,
        default_chain=settings.default_chain,
    )
    logger.info("Market relay: quotes from %s, feed from %s", settings.api_url, settings.ws_url)
    return MarketRelay(
        gateway,
        api_key=settings.api_key,
        ws_url=settings.ws_url,
        default_chain=settings.default_chain,
        heartbeat_interval=settings.heartbeat_interval,
        reconnect_delay=settings.reconnect_delay,
    )
