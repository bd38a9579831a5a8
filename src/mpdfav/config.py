"""Configuration management for mpdfav."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore


@dataclass
class MPDConfig:
    """Daemon endpoint."""

    host: str = "localhost"
    port: int = 6600
    timeout: float = 10.0


@dataclass
class PlaycountConfig:
    """Playcount tracker settings."""

    enabled: bool = True
    sticker: str = "playcount"
    threshold: int = 10
    poll_interval: float = 0.9


@dataclass
class DaemonConfig:
    """Runner settings."""

    log_level: str = "info"
    log_file: str = ""


@dataclass
class Config:
    """Full mpdfav configuration."""

    mpd: MPDConfig = field(default_factory=MPDConfig)
    playcount: PlaycountConfig = field(default_factory=PlaycountConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)


def get_config_dir() -> Path:
    """Get the mpdfav config directory."""
    if xdg_config := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_config) / "mpdfav"
    return Path.home() / ".config" / "mpdfav"


def get_state_dir() -> Path:
    """Get the mpdfav state directory (for logs)."""
    if xdg_state := os.environ.get("XDG_STATE_HOME"):
        return Path(xdg_state) / "mpdfav"
    return Path.home() / ".local" / "state" / "mpdfav"


def load_config(path: Path | None = None) -> Config:
    """Load configuration from file, then apply environment overrides."""
    config_file = path or get_config_dir() / "config.toml"

    if config_file.exists():
        with open(config_file, "rb") as f:
            data = tomllib.load(f)
        config = Config(
            mpd=MPDConfig(**data.get("mpd", {})),
            playcount=PlaycountConfig(**data.get("playcount", {})),
            daemon=DaemonConfig(**data.get("daemon", {})),
        )
    else:
        config = Config()

    if host := os.environ.get("MPD_HOST"):
        config.mpd.host = host
    if port := os.environ.get("MPD_PORT"):
        config.mpd.port = int(port)

    return config


def get_log_file(config: Config) -> Path:
    """Get the daemon log file, considering config overrides."""
    if config.daemon.log_file:
        return Path(config.daemon.log_file)
    return get_state_dir() / "mpdfav.log"
