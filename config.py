"""Configuration constants and layered settings for the static file server."""

from __future__ import annotations

import logging
import os
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

HOST: str = "0.0.0.0"
PORT: int = 8089
STATIC_DIR: str = "."
CONFIG_FILE: str = "config.toml"
SERVER_NAME: str = "sonic-wave/1.0"

DEFAULT_CACHE_CONTROL: str = "public, max-age=31536000, immutable"
DEFAULT_HTML_CACHE_CONTROL: str = "no-cache, must-revalidate"
CACHE_PROFILES: tuple[str, ...] = ("split", "uniform")

BUFFER_SIZE: int = 1024
READ_CHUNK_SIZE: int = 8192
SOCKET_TIMEOUT_SECS: int = 5
KEEPALIVE_TIMEOUT_SECS: int = 5
MAX_KEEPALIVE_REQUESTS: int = 100
DRAIN_TIMEOUT_SECS: float = 10.0
WORKER_COUNT: int = 16
REQUEST_QUEUE_SIZE: int = 128
MAX_REQUEST_BYTES: int = 1_048_576
MAX_HEADER_BYTES: int = 16_384
MAX_BODY_BYTES: int = 65_536
MAX_TARGET_LENGTH: int = 8192

LOG_FORMAT: str = "plain"
LOG_LEVEL: str = "INFO"

_U16_PATTERN = re.compile(r"\+?[0-9]+")


class ConfigFileError(ValueError):
    """Raised when a config file is readable but its contents are unusable."""


@dataclass(frozen=True, slots=True)
class ServerConfig:
    port: int = PORT
    static_dir: str = STATIC_DIR
    cache_control: str = DEFAULT_CACHE_CONTROL
    html_cache_control: str | None = DEFAULT_HTML_CACHE_CONTROL
    host: str = HOST

    @property
    def html_policy(self) -> str:
        """Cache policy for HTML-like paths; the asset policy when uniform."""
        if self.html_cache_control is None:
            return self.cache_control
        return self.html_cache_control

    @property
    def cache_profile(self) -> str:
        return "uniform" if self.html_cache_control is None else "split"


def parse_port(value: str) -> int | None:
    """Parse an unsigned 16-bit port number, returning None when invalid."""
    if not _U16_PATTERN.fullmatch(value):
        return None
    port = int(value)
    if port > 65_535:
        return None
    return port


def _require_str(table: Mapping[str, Any], key: str) -> str | None:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigFileError(f"{key} must be a string")
    return value


def config_from_toml(text: str) -> ServerConfig:
    """Build a config from TOML text; absent keys keep their defaults."""
    try:
        table = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigFileError(str(exc)) from exc

    port = table.get("port", PORT)
    if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= 65_535:
        raise ConfigFileError("port must be an integer between 0 and 65535")

    static_dir = _require_str(table, "static_dir")
    cache_control = _require_str(table, "cache_control")
    html_cache_control = _require_str(table, "html_cache_control")
    profile = _require_str(table, "cache_profile") or "split"
    if profile not in CACHE_PROFILES:
        raise ConfigFileError(f"cache_profile must be one of {', '.join(CACHE_PROFILES)}")

    if static_dir is None:
        static_dir = STATIC_DIR
    if cache_control is None:
        cache_control = DEFAULT_CACHE_CONTROL
    if profile == "uniform":
        html_cache_control = None
    elif html_cache_control is None:
        html_cache_control = DEFAULT_HTML_CACHE_CONTROL

    return ServerConfig(
        port=port,
        static_dir=static_dir,
        cache_control=cache_control,
        html_cache_control=html_cache_control,
    )


def _load_config_file(config_path: Path) -> ServerConfig:
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("No %s found, using defaults", config_path.name)
        return ServerConfig()
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Failed to read %s: %s, using defaults", config_path, exc)
        return ServerConfig()

    try:
        return config_from_toml(text)
    except ConfigFileError as exc:
        logger.warning("Failed to parse %s: %s, using defaults", config_path, exc)
        return ServerConfig()


def resolve_config(
    config_path: str | Path = CONFIG_FILE,
    environ: Mapping[str, str] | None = None,
) -> ServerConfig:
    """Resolve settings with precedence environment > config file > defaults.

    Never raises: unreadable or malformed files fall back to defaults and
    unparseable environment values are ignored.
    """
    env = os.environ if environ is None else environ
    config = _load_config_file(Path(config_path))

    port = config.port
    raw_port = env.get("PORT")
    if raw_port is not None:
        parsed_port = parse_port(raw_port)
        if parsed_port is None:
            logger.warning("Ignoring invalid PORT value: %r", raw_port)
        else:
            logger.info("Port overridden by env: %s", parsed_port)
            port = parsed_port

    static_dir = config.static_dir
    raw_static_dir = env.get("STATIC_DIR")
    if raw_static_dir is not None:
        logger.info("Static dir overridden by env: %s", raw_static_dir)
        static_dir = raw_static_dir

    return ServerConfig(
        port=port,
        static_dir=static_dir,
        cache_control=config.cache_control,
        html_cache_control=config.html_cache_control,
        host=config.host,
    )
