"""Configuration loading for the schedule collector.

Configuration is loaded from a single YAML file (config/config.yaml by
default) whose ``collector:`` section maps onto the CollectorConfig
dataclass tree.

Usage:
    >>> from config import load_config
    >>> config = load_config()
    >>> config.scheduler.interval_seconds
    60.0

Custom config path:
    >>> from pathlib import Path
    >>> config = load_config(config_path=Path("/custom/path/config.yaml"))
"""

from config.config import (
    ChangeDetectionConfig,
    CollectorConfig,
    CollectorEndpointConfig,
    CredentialConfig,
    HookServerConfig,
    LoggingConfig,
    SchedulerConfig,
    StoreConfig,
    UpstreamConfig,
    build_config,
    load_config,
)

__all__ = [
    "CollectorConfig",
    "UpstreamConfig",
    "CredentialConfig",
    "CollectorEndpointConfig",
    "ChangeDetectionConfig",
    "SchedulerConfig",
    "StoreConfig",
    "HookServerConfig",
    "LoggingConfig",
    "build_config",
    "load_config",
]
