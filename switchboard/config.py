import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

import yaml

from .errors import ValidationError

DEFAULTS = {
    "api_url": "http://localhost:5000/api",
    "hub_url": "http://localhost:5000/hubs/chat",
    "connect_timeout": 10.0,
    "request_timeout": 15.0,
    "keepalive_interval": 15.0,
    "reconnect_delays": [0, 2, 10, 30],
    "session_file": "~/.switchboard/session.json",
    "log_level": "INFO",
}


@dataclass
class Settings:
    api_url: str = DEFAULTS["api_url"]
    hub_url: str = DEFAULTS["hub_url"]
    connect_timeout: float = DEFAULTS["connect_timeout"]
    request_timeout: float = DEFAULTS["request_timeout"]
    keepalive_interval: float = DEFAULTS["keepalive_interval"]
    reconnect_delays: list[float] = field(default_factory=lambda: list(DEFAULTS["reconnect_delays"]))
    session_file: str = DEFAULTS["session_file"]
    log_level: str = DEFAULTS["log_level"]

    @property
    def session_path(self) -> Path:
        return Path(self.session_file).expanduser()


def config_file() -> Path:
    """Return config file path, honouring SWITCHBOARD_CONFIG."""
    override = os.environ.get("SWITCHBOARD_CONFIG")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".switchboard" / "config.yaml"


def _validate_config(cfg: dict) -> None:
    """Validate config structure. Fail fast on invalid types."""
    if not isinstance(cfg, dict):
        raise ValidationError(f"Config must be a dict, got {type(cfg).__name__}")

    for key in ("connect_timeout", "request_timeout", "keepalive_interval"):
        value = cfg.get(key)
        if value is not None and (not isinstance(value, (int, float)) or value <= 0):
            raise ValidationError(f"Config '{key}' must be a positive number")

    delays = cfg.get("reconnect_delays")
    if delays is not None:
        if not isinstance(delays, list) or not all(
            isinstance(d, (int, float)) and d >= 0 for d in delays
        ):
            raise ValidationError("Config 'reconnect_delays' must be a list of non-negative numbers")

    for key in ("api_url", "hub_url", "session_file", "log_level"):
        if key in cfg and not isinstance(cfg[key], str):
            raise ValidationError(f"Config '{key}' must be a string")


def _clear_cache():
    load_config.cache_clear()


@lru_cache(maxsize=1)
def load_config() -> dict:
    """Load the config file merged over defaults."""
    path = config_file()
    cfg = {}
    if path.exists():
        with open(path) as f:
            cfg = yaml.safe_load(f) or {}
    _validate_config(cfg)
    return {**DEFAULTS, **cfg}


def load_settings(**overrides) -> Settings:
    cfg = {**load_config(), **{k: v for k, v in overrides.items() if v is not None}}
    _validate_config(cfg)
    known = Settings.__dataclass_fields__.keys()
    return Settings(**{k: v for k, v in cfg.items() if k in known})
