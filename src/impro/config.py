"""
IMPRO Configuration Management

Loads settings from config/default.json with environment variable overrides.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False
    cors_allowed_origins: str = "*"


@dataclass
class StorageConfig:
    enabled: bool = True
    db_path: str = ""  # empty = platform data directory
    seed_templates: bool = True


@dataclass
class ConnectionConfig:
    """Client reconnection and queueing behaviour."""
    reconnection_attempts: int = 10
    initial_reconnection_delay: float = 1.0  # seconds
    max_reconnection_delay: float = 30.0
    reconnection_delay_growth_factor: float = 1.5
    randomization_factor: float = 0.5
    timeout: float = 20.0
    queue_ttl: float = 300.0  # 5 minutes


@dataclass
class TeamConfig:
    name: str = "TEAM"
    color: str = "#3b82f6"


@dataclass
class Config:
    web: WebConfig = field(default_factory=WebConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    client: ConnectionConfig = field(default_factory=ConnectionConfig)
    team1: TeamConfig = field(default_factory=lambda: TeamConfig(name="Blue Team", color="#3b82f6"))
    team2: TeamConfig = field(default_factory=lambda: TeamConfig(name="Red Team", color="#ef4444"))
    default_room: str = "default"
    debug: bool = False


def _apply_section(section, data: dict) -> None:
    """Copy known keys from a JSON object onto a config dataclass."""
    for key, value in data.items():
        if hasattr(section, key):
            setattr(section, key, value)


def _env_flag(name: str) -> bool:
    return os.environ[name].lower() in ("true", "1", "yes")


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from JSON file with environment variable overrides.

    Priority (highest to lowest):
    1. Environment variables (IMPRO_*)
    2. Config file values
    3. Default values
    """
    config = Config()

    # Determine config file path
    if config_path is None:
        base_dir = Path(__file__).parent.parent
        config_path = base_dir / "config" / "default.json"
    else:
        config_path = Path(config_path)

    # Load from JSON if exists
    if config_path.exists():
        with open(config_path, "r") as f:
            data = json.load(f)

        for name in ("web", "storage", "client", "team1", "team2"):
            if name in data:
                _apply_section(getattr(config, name), data[name])

        config.default_room = data.get("default_room", config.default_room)
        config.debug = data.get("debug", config.debug)

    # Environment variable overrides
    if os.environ.get("IMPRO_WEB_HOST"):
        config.web.host = os.environ["IMPRO_WEB_HOST"]
    if os.environ.get("IMPRO_WEB_PORT"):
        config.web.port = int(os.environ["IMPRO_WEB_PORT"])
    if os.environ.get("IMPRO_CORS_ORIGINS"):
        config.web.cors_allowed_origins = os.environ["IMPRO_CORS_ORIGINS"]
    if os.environ.get("IMPRO_STORAGE"):
        config.storage.enabled = _env_flag("IMPRO_STORAGE")
    if os.environ.get("IMPRO_DB_PATH"):
        config.storage.db_path = os.environ["IMPRO_DB_PATH"]
    if os.environ.get("IMPRO_SEED_TEMPLATES"):
        config.storage.seed_templates = _env_flag("IMPRO_SEED_TEMPLATES")
    if os.environ.get("IMPRO_RECONNECTION_ATTEMPTS"):
        config.client.reconnection_attempts = int(os.environ["IMPRO_RECONNECTION_ATTEMPTS"])
    if os.environ.get("IMPRO_CONNECT_TIMEOUT"):
        config.client.timeout = float(os.environ["IMPRO_CONNECT_TIMEOUT"])
    if os.environ.get("IMPRO_DEFAULT_ROOM"):
        config.default_room = os.environ["IMPRO_DEFAULT_ROOM"]
    if os.environ.get("IMPRO_DEBUG"):
        config.debug = _env_flag("IMPRO_DEBUG")

    return config


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global config instance, loading it if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Config) -> None:
    """Set the global config instance."""
    global _config
    _config = config
