"""
Configuration management for an UltraNote data directory.

The configuration is stored as a TOML file in the data directory.
It covers the server (where the document lives and how it is served),
the sync client (polling, debounce, typing guard) and document limits.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w

from .merge import DeletePolicy
from .types import DEFAULT_ACTIVITY_LIMIT


CONFIG_FILENAME = "ultranote.toml"
CONFIG_VERSION = 1

DEFAULT_PORT = 3366
DEFAULT_MAX_BODY_BYTES = 2 * 1024 * 1024


class ConfigError(ValueError):
    """The config file exists but cannot be used."""


@dataclass
class ServerConfig:
    """Where the document lives and how the API is served."""
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    data_file: str = "data.json"
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    delete_policy: DeletePolicy = DeletePolicy.RECENCY


@dataclass
class SyncConfig:
    """Client-side timing for the write path and the background poll."""
    server_url: str = f"http://127.0.0.1:{DEFAULT_PORT}"
    poll_interval: float = 10.0
    initial_delay: float = 2.0
    debounce: float = 0.4
    typing_quiet_period: float = 4.0
    timeout: float = 10.0
    auto_sync: bool = True
    immediate_keys: list[str] = field(default_factory=lambda: ["scratchpad"])


@dataclass
class StoreConfig:
    """Complete configuration of a data directory."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    server: ServerConfig = field(default_factory=ServerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    activity_limit: int = DEFAULT_ACTIVITY_LIMIT

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def data_path(self) -> Path:
        """Path to the JSON document."""
        return self.path / self.server.data_file

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_data_dir() -> Path:
    """
    Resolve the data directory.

    Priority:
    1. ULTRANOTE_DATA_DIR environment variable
    2. ~/.ultranote
    """
    env = os.environ.get("ULTRANOTE_DATA_DIR")
    if env:
        return Path(env).expanduser().resolve()
    return Path.home() / ".ultranote"


def _apply_env_overrides(config: StoreConfig) -> StoreConfig:
    """Environment wins over the file for the listening port and server URL."""
    port = os.environ.get("PORT")
    if port:
        try:
            config.server.port = int(port)
        except ValueError:
            raise ConfigError(f"PORT must be an integer, got {port!r}")
    url = os.environ.get("ULTRANOTE_SERVER_URL")
    if url:
        config.sync.server_url = url
    return config


def _pick(section: dict, cls, **casts) -> Any:
    """Build a dataclass from a TOML table, ignoring unknown keys."""
    defaults = cls()
    kwargs = {}
    for name in defaults.__dataclass_fields__:
        if name in section:
            value = section[name]
            cast = casts.get(name)
            try:
                kwargs[name] = cast(value) if cast else value
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {name}: {value!r} ({e})")
    return cls(**kwargs)


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a data directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ConfigError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Cannot parse {config_path}: {e}")

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ConfigError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    server = _pick(data.get("server", {}), ServerConfig,
                   port=int, max_body_bytes=int, delete_policy=DeletePolicy)
    sync = _pick(data.get("sync", {}), SyncConfig,
                 poll_interval=float, initial_delay=float, debounce=float,
                 typing_quiet_period=float, timeout=float, auto_sync=bool,
                 immediate_keys=list)

    config = StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        server=server,
        sync=sync,
        activity_limit=int(data.get("document", {}).get("activity_limit", DEFAULT_ACTIVITY_LIMIT)),
    )
    return _apply_env_overrides(config)


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the data directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "server": {
            "host": config.server.host,
            "port": config.server.port,
            "data_file": config.server.data_file,
            "max_body_bytes": config.server.max_body_bytes,
            "delete_policy": config.server.delete_policy.value,
        },
        "sync": {
            "server_url": config.sync.server_url,
            "poll_interval": config.sync.poll_interval,
            "initial_delay": config.sync.initial_delay,
            "debounce": config.sync.debounce,
            "typing_quiet_period": config.sync.typing_quiet_period,
            "timeout": config.sync.timeout,
            "auto_sync": config.sync.auto_sync,
            "immediate_keys": list(config.sync.immediate_keys),
        },
        "document": {
            "activity_limit": config.activity_limit,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return _apply_env_overrides(config)
