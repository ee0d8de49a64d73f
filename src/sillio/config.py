"""Runtime configuration loader for sillio.

Loads config.json once, resolves secret references from environment
variables, and exposes typed dataclasses via get_config().

Secret Resolution
-----------------
Values in config.json that look like ``UPPER_SNAKE_CASE`` strings
(e.g. ``"SILLIO_WEBHOOK_PASSWORD"``) are treated as env-var references and
resolved from ``os.environ``.

Only the application bootstrap calls get_config(); everything else receives
the dataclass it needs through its constructor.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from sillio.constants import (
    CONFIG_ENV_VAR,
    CONFIG_FILENAME,
    DEFAULT_CACHE_DIR,
    DEFAULT_LOG_LEVEL,
    HEALTH_CHECK_COOLDOWN,
    HEALTH_CHECK_GRACE,
    HEALTH_CHECK_INTERVAL,
    HEALTH_CHECK_TIMEOUT,
    INBOUND_QUEUE_SIZE,
    LOG_QUEUE_SIZE,
    MMCLI_COMMAND_TIMEOUT,
    MMCLI_PATH,
    MMCLI_POLL_INTERVAL,
    WEBHOOK_TIMEOUT,
)

# Pattern to detect env-var-style values: UPPER_SNAKE_CASE with optional digits
_ENV_VAR_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]{2,}$")


# ──────────────────────────────────────────────────────────────────────
# Secret Resolution
# ──────────────────────────────────────────────────────────────────────


def resolve_secret(value: str) -> str | None:
    """Resolve a potential secret reference.

    If ``value`` looks like an env-var name (UPPER_SNAKE_CASE),
    resolve it from os.environ.

    Returns:
        The resolved secret string, or None if not found.
    """
    if not isinstance(value, str) or not value:
        return value

    if _ENV_VAR_PATTERN.match(value):
        resolved = os.environ.get(value)
        if resolved is None:
            logger.warning(
                f"Secret reference '{value}' not found in environment. "
                f"Set it in .env or export it."
            )
        return resolved

    # Literal value (not an env-var reference)
    return value


# ──────────────────────────────────────────────────────────────────────
# Config Dataclasses
# ──────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class WebhookConfig:
    """Where and how canonical messages are POSTed."""

    url: str = ""
    username: str | None = None  # Already resolved from env
    password: str | None = None  # Already resolved from env
    timeout: float = WEBHOOK_TIMEOUT

    @property
    def enabled(self) -> bool:
        return bool(self.url)


@dataclass(frozen=True)
class HealthCheckConfig:
    """Watchdog policy knobs. All durations are seconds."""

    enabled: bool = True
    interval: float = HEALTH_CHECK_INTERVAL
    timeout: float = HEALTH_CHECK_TIMEOUT
    cooldown: float = HEALTH_CHECK_COOLDOWN
    grace: float = HEALTH_CHECK_GRACE
    fatal_on_timeout: bool = True


@dataclass(frozen=True)
class ModemConfig:
    """Settings for the ModemManager transport."""

    mmcli_path: str = MMCLI_PATH
    poll_interval: float = MMCLI_POLL_INTERVAL
    command_timeout: float = MMCLI_COMMAND_TIMEOUT
    delete_sent_records: bool = True


@dataclass(frozen=True)
class BusConfig:
    """Capacities of the drop-on-full fan-out queues."""

    inbound_maxsize: int = INBOUND_QUEUE_SIZE
    log_maxsize: int = LOG_QUEUE_SIZE


@dataclass(frozen=True)
class ChannelConfig:
    """Configuration for a single chat bridge channel."""

    name: str
    type: str
    enabled: bool = False
    token: str | None = None     # Already resolved from env
    chat_id: str | None = None   # Already resolved from env
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class AppConfig:
    """Root config object holding all resolved configuration."""

    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    health_check: HealthCheckConfig = field(default_factory=HealthCheckConfig)
    modem: ModemConfig = field(default_factory=ModemConfig)
    bus: BusConfig = field(default_factory=BusConfig)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)
    cache_dir: str = DEFAULT_CACHE_DIR
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def resolved_cache_dir(self) -> Path | None:
        """Return the cache directory as an absolute Path, or None if disabled."""
        if not self.cache_dir:
            return None
        return Path(self.cache_dir).expanduser().resolve()

    def get_channel(self, name: str) -> ChannelConfig | None:
        """Get a channel config by name, or None if not found."""
        return self.channels.get(name)

    def get_enabled_channels(self) -> dict[str, ChannelConfig]:
        """Return only enabled channels."""
        return {k: v for k, v in self.channels.items() if v.enabled}


# ──────────────────────────────────────────────────────────────────────
# Config Loading
# ──────────────────────────────────────────────────────────────────────

_config: AppConfig | None = None


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (where configs/ lives)."""
    current = Path(__file__).resolve().parent
    for _ in range(10):  # safety limit
        if (current / "configs").is_dir():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent
    raise FileNotFoundError(
        f"Could not find project root (looked for 'configs/' directory "
        f"starting from {Path(__file__).resolve().parent})"
    )


def _config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return _find_project_root() / CONFIG_FILENAME


def _load_raw_config() -> dict[str, Any]:
    """Load and return the raw config.json dict."""
    config_path = _config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        data = json.load(f)

    logger.info(f"Loaded config from {config_path}")
    return data


def _parse_config(raw: dict[str, Any]) -> AppConfig:
    """Parse raw config dict into typed AppConfig."""

    # --- Webhook ---
    hook_raw = raw.get("webhook", {})
    webhook = WebhookConfig(
        url=resolve_secret(hook_raw.get("url", "")) or "",
        username=resolve_secret(hook_raw.get("username", "")) or None,
        password=resolve_secret(hook_raw.get("password", "")) or None,
        timeout=float(hook_raw.get("timeout", WEBHOOK_TIMEOUT)),
    )

    # --- Health check ---
    hc_raw = raw.get("health_check", {})
    health_check = HealthCheckConfig(
        enabled=hc_raw.get("enabled", True),
        interval=float(hc_raw.get("interval", HEALTH_CHECK_INTERVAL)),
        timeout=float(hc_raw.get("timeout", HEALTH_CHECK_TIMEOUT)),
        cooldown=float(hc_raw.get("cooldown", HEALTH_CHECK_COOLDOWN)),
        grace=float(hc_raw.get("grace", HEALTH_CHECK_GRACE)),
        fatal_on_timeout=hc_raw.get("fatal_on_timeout", True),
    )

    # --- Modem ---
    modem_raw = raw.get("modem", {})
    modem = ModemConfig(
        mmcli_path=modem_raw.get("mmcli_path", MMCLI_PATH),
        poll_interval=float(modem_raw.get("poll_interval", MMCLI_POLL_INTERVAL)),
        command_timeout=float(
            modem_raw.get("command_timeout", MMCLI_COMMAND_TIMEOUT)
        ),
        delete_sent_records=modem_raw.get("delete_sent_records", True),
    )

    # --- Bus ---
    bus_raw = raw.get("bus", {})
    bus = BusConfig(
        inbound_maxsize=int(bus_raw.get("inbound_maxsize", INBOUND_QUEUE_SIZE)),
        log_maxsize=int(bus_raw.get("log_maxsize", LOG_QUEUE_SIZE)),
    )

    # --- Channels ---
    channels: dict[str, ChannelConfig] = {}
    for name, chan_raw in raw.get("channels", {}).items():
        token_key = chan_raw.get("env_token", "")
        chat_id_key = chan_raw.get("env_chat_id", "")

        channels[name] = ChannelConfig(
            name=name,
            type=chan_raw.get("type", name),
            enabled=chan_raw.get("enabled", False),
            token=resolve_secret(token_key) if token_key else None,
            chat_id=resolve_secret(chat_id_key) if chat_id_key else None,
            extra={
                k: v for k, v in chan_raw.items()
                if k not in {"type", "enabled", "env_token", "env_chat_id"}
            },
        )

    return AppConfig(
        webhook=webhook,
        health_check=health_check,
        modem=modem,
        bus=bus,
        channels=channels,
        cache_dir=raw.get("cache_dir", DEFAULT_CACHE_DIR),
        log_level=raw.get("log_level", DEFAULT_LOG_LEVEL),
    )


def get_config(*, reload: bool = False) -> AppConfig:
    """Return the singleton AppConfig, loading it on first call.

    Args:
        reload: Force re-read from disk (useful for testing).
    """
    global _config

    if _config is None or reload:
        from dotenv import load_dotenv

        load_dotenv()  # populate os.environ from .env

        raw = _load_raw_config()
        _config = _parse_config(raw)
        logger.debug(
            f"Config loaded: webhook={'on' if _config.webhook.enabled else 'off'}, "
            f"{len(_config.channels)} channels"
        )

    return _config
