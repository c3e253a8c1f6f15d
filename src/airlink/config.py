"""AirLink configuration management.

Settings come from dataclass defaults, then an optional YAML file, then
``AIRLINK_*`` environment variables (e.g. ``AIRLINK_PORT=9000``).
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger("airlink.config")

ENV_PREFIX = "AIRLINK_"


@dataclass
class AirLinkConfig:
    host: str = "0.0.0.0"
    port: int = 8765
    session_ttl_seconds: float = 60.0
    min_interval_ms: int = 30
    idle_timeout_ms: int = 1500
    max_duration_ms: int = 10000
    match_floor: float = 0.5
    actionable_threshold: float = 0.7
    log_level: str = "info"

    @classmethod
    def from_dict(cls, data: dict) -> AirLinkConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_yaml(cls, path: str | Path) -> AirLinkConfig:
        """Load settings from a YAML file. Missing keys keep their defaults."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    def to_yaml(self, path: str | Path):
        with open(path, "w") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, sort_keys=False)

    def with_env(self, environ: Optional[dict] = None) -> AirLinkConfig:
        """Return a copy with ``AIRLINK_*`` overrides applied."""
        environ = os.environ if environ is None else environ
        values = asdict(self)
        for f in fields(self):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            default = values[f.name]
            try:
                values[f.name] = type(default)(raw)
            except ValueError:
                logger.warning("Bad value for %s%s: %r", ENV_PREFIX, f.name.upper(), raw)
        return AirLinkConfig(**values)


_config: Optional[AirLinkConfig] = None


def load_config(path: Optional[str | Path] = None) -> AirLinkConfig:
    if path is not None:
        config = AirLinkConfig.from_yaml(path)
    else:
        config = AirLinkConfig()
    return config.with_env()


def get_config() -> AirLinkConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AirLinkConfig):
    global _config
    _config = config
