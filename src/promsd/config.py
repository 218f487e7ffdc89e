"""Configuration loading and merging for prometheus-mdns-sd."""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml


DEFAULT_SERVICE_TYPE = "_prometheus-http._tcp.local."


class ConfigError(ValueError):
    """Raised when a configuration value is unusable."""


@dataclass
class SdConfig:
    # mDNS service type to browse for
    service_type: str = DEFAULT_SERVICE_TYPE

    # Seconds between discovery queries and between aggregation cycles
    interval: float = 15

    # Seconds without an announcement before a service is dropped
    timeout: float = 60

    # Target file path; None writes each snapshot to stdout
    output: Optional[str] = None


def load_config(path: str | Path) -> SdConfig:
    """Load an SdConfig from a YAML file."""
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    valid_fields = {f.name for f in fields(SdConfig)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return SdConfig(**filtered)


def merge_cli_args(config: SdConfig, args) -> SdConfig:
    """Overlay CLI arguments onto an existing config. CLI values take precedence."""
    for f in fields(SdConfig):
        cli_val = getattr(args, f.name, None)
        if cli_val is not None:
            setattr(config, f.name, cli_val)
    return config


def validate_config(config: SdConfig) -> None:
    if not config.service_type:
        raise ConfigError("service_type must not be empty")
    if config.interval <= 0:
        raise ConfigError(f"interval must be positive (got {config.interval})")
    # Expiry has to tolerate at least one missed refresh
    if config.timeout <= config.interval:
        raise ConfigError(
            f"timeout ({config.timeout}) must be greater than interval ({config.interval})"
        )
