"""Schedule collector configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Upstream schedule API and query defaults
- Credential acquisition strategies
- Collector endpoint and delivery retry policy
- Change detection, scheduler, store, hook server, logging

Environment variables ARE supported using ${VAR_NAME} and ${VAR_NAME:-default}
syntax in YAML files.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

VALID_POLICIES = ("content_diff", "ttl")
VALID_BACKENDS = ("file", "memory")
VALID_STRATEGIES = ("header_capture", "token_extraction")


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _as_bool(value: Any) -> bool:
    # bool('false') would be True, so strings from env expansion need parsing
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class UpstreamConfig:
    """Upstream schedule API."""

    url: str = "https://api.inplayip.tv/api/schedule/table"
    request_timeout_seconds: float = 30.0
    days_ahead: int = 1
    # ScheduleQuery fields (search_word, show_live, ...)
    query: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CredentialConfig:
    """How the agent obtains upstream credentials from observed host traffic."""

    strategies: List[str] = field(default_factory=lambda: list(VALID_STRATEGIES))
    handshake_marker: str = "stream_settings_aliases"
    token_param: str = "access_token"
    # Empty list keeps the full captured header bag
    header_allowlist: List[str] = field(default_factory=list)
    # Empty list accepts traffic from any host
    allowed_hosts: List[str] = field(default_factory=list)
    static_headers: Dict[str, str] = field(default_factory=dict)
    wait_seconds: float = 5.0
    max_misses: int = 3
    default_ttl_seconds: Optional[float] = None


@dataclass
class CollectorEndpointConfig:
    """Remote collector that receives snapshots."""

    url: str = ""
    source_tag: str = "schedule-collector"
    authorization: str = ""
    max_attempts: int = 3
    retry_delay_seconds: float = 1.0
    request_timeout_seconds: float = 30.0


@dataclass
class ChangeDetectionConfig:
    policy: str = "content_diff"
    ttl_interval_seconds: float = 3600.0
    # Lifetime of the cached "last delivered" snapshot; None keeps it forever
    cache_ttl_seconds: Optional[float] = 86400.0
    # Per-calendar-day upstream cache; None disables it
    day_cache_ttl_seconds: Optional[float] = None


@dataclass
class SchedulerConfig:
    interval_seconds: float = 60.0


@dataclass
class StoreConfig:
    backend: str = "file"
    path: str = "data/collector_store.json"
    prefix: str = "collector_"


@dataclass
class HookServerConfig:
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8765


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = False
    file: Optional[str] = None


@dataclass
class CollectorConfig:
    """Schedule collector configuration.

    Configuration structure:
        collector:
          upstream: {...}          # Schedule API + query defaults
          credentials: {...}       # Acquisition strategies and budget
          collector: {...}         # Delivery endpoint + retry policy
          change_detection: {...}  # content_diff | ttl
          scheduler: {...}         # Polling interval
          store: {...}             # file | memory
          hook_server: {...}       # Host traffic receiver
          logging: {...}

    All timing values in seconds.
    """

    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    credentials: CredentialConfig = field(default_factory=CredentialConfig)
    collector: CollectorEndpointConfig = field(default_factory=CollectorEndpointConfig)
    change_detection: ChangeDetectionConfig = field(default_factory=ChangeDetectionConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    hook_server: HookServerConfig = field(default_factory=HookServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Validate configuration for correctness and constraints."""
        self._validate_url(self.upstream.url, "upstream.url")
        self._validate_url(self.collector.url, "collector.url")

        self._validate_min(self.upstream.request_timeout_seconds, "upstream.request_timeout_seconds", 0, inclusive=False)
        self._validate_min(self.upstream.days_ahead, "upstream.days_ahead", 1, inclusive=True)
        self._validate_min(self.credentials.wait_seconds, "credentials.wait_seconds", 0, inclusive=True)
        self._validate_min(self.credentials.max_misses, "credentials.max_misses", 1, inclusive=True)
        self._validate_min(self.collector.max_attempts, "collector.max_attempts", 1, inclusive=True)
        self._validate_min(self.collector.retry_delay_seconds, "collector.retry_delay_seconds", 0, inclusive=True)
        self._validate_min(self.collector.request_timeout_seconds, "collector.request_timeout_seconds", 0, inclusive=False)
        self._validate_min(self.change_detection.ttl_interval_seconds, "change_detection.ttl_interval_seconds", 0, inclusive=False)
        self._validate_min(self.scheduler.interval_seconds, "scheduler.interval_seconds", 0, inclusive=False)

        if self.change_detection.cache_ttl_seconds is not None:
            self._validate_min(
                self.change_detection.cache_ttl_seconds, "change_detection.cache_ttl_seconds", 0, inclusive=False
            )
        if self.change_detection.day_cache_ttl_seconds is not None:
            self._validate_min(
                self.change_detection.day_cache_ttl_seconds,
                "change_detection.day_cache_ttl_seconds",
                0,
                inclusive=False,
            )
        if self.credentials.default_ttl_seconds is not None:
            self._validate_min(
                self.credentials.default_ttl_seconds, "credentials.default_ttl_seconds", 0, inclusive=False
            )

        self._validate_enum(self.change_detection.policy, "change_detection.policy", VALID_POLICIES)
        self._validate_enum(self.store.backend, "store.backend", VALID_BACKENDS)
        if not self.credentials.strategies and not self.credentials.static_headers:
            raise ValueError("credentials.strategies must not be empty unless static_headers are configured")
        for strategy in self.credentials.strategies:
            self._validate_enum(strategy, "credentials.strategies", VALID_STRATEGIES)

        if self.store.backend == "file" and not self.store.path:
            raise ValueError("store.path is required when store.backend is 'file'")
        if not 0 <= self.hook_server.port <= 65535:
            raise ValueError(f"hook_server.port must be between 0 and 65535, got {self.hook_server.port}")

    @staticmethod
    def _validate_url(value: str, key: str) -> None:
        if not value:
            raise ValueError(f"{key} is required")
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"{key} must start with http:// or https://, got: {value!r}")

    @staticmethod
    def _validate_enum(value: Any, key: str, valid_values: tuple) -> None:
        if value not in valid_values:
            raise ValueError(f"{key} must be one of {list(valid_values)}, got '{value}'")

    @staticmethod
    def _validate_min(value: float, key: str, min_value: float, inclusive: bool) -> None:
        if inclusive and value < min_value:
            raise ValueError(f"{key} must be >= {min_value}, got {value}")
        elif not inclusive and value <= min_value:
            raise ValueError(f"{key} must be > {min_value}, got {value}")


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def build_config(data: Dict[str, Any]) -> CollectorConfig:
    """Build a CollectorConfig from the ``collector:`` section of a YAML document."""
    upstream = data.get("upstream", {})
    credentials = data.get("credentials", {})
    collector = data.get("collector", {})
    change_detection = data.get("change_detection", {})
    scheduler = data.get("scheduler", {})
    store = data.get("store", {})
    hook_server = data.get("hook_server", {})
    logging_section = data.get("logging", {})

    defaults = CollectorConfig()

    return CollectorConfig(
        upstream=UpstreamConfig(
            url=upstream.get("url", defaults.upstream.url),
            request_timeout_seconds=float(
                upstream.get("request_timeout_seconds", defaults.upstream.request_timeout_seconds)
            ),
            days_ahead=int(upstream.get("days_ahead", defaults.upstream.days_ahead)),
            query=dict(upstream.get("query") or {}),
        ),
        credentials=CredentialConfig(
            strategies=list(credentials.get("strategies", defaults.credentials.strategies)),
            handshake_marker=credentials.get("handshake_marker", defaults.credentials.handshake_marker),
            token_param=credentials.get("token_param", defaults.credentials.token_param),
            header_allowlist=list(credentials.get("header_allowlist") or []),
            allowed_hosts=list(credentials.get("allowed_hosts") or []),
            static_headers={
                str(k): str(v) for k, v in (credentials.get("static_headers") or {}).items() if v
            },
            wait_seconds=float(credentials.get("wait_seconds", defaults.credentials.wait_seconds)),
            max_misses=int(credentials.get("max_misses", defaults.credentials.max_misses)),
            default_ttl_seconds=_optional_float(credentials.get("default_ttl_seconds")),
        ),
        collector=CollectorEndpointConfig(
            url=os.getenv("COLLECTOR_URL") or collector.get("url", ""),
            source_tag=collector.get("source_tag", defaults.collector.source_tag),
            authorization=os.getenv("COLLECTOR_AUTHORIZATION") or collector.get("authorization", ""),
            max_attempts=int(collector.get("max_attempts", defaults.collector.max_attempts)),
            retry_delay_seconds=float(
                collector.get("retry_delay_seconds", defaults.collector.retry_delay_seconds)
            ),
            request_timeout_seconds=float(
                collector.get("request_timeout_seconds", defaults.collector.request_timeout_seconds)
            ),
        ),
        change_detection=ChangeDetectionConfig(
            policy=change_detection.get("policy", defaults.change_detection.policy),
            ttl_interval_seconds=float(
                change_detection.get("ttl_interval_seconds", defaults.change_detection.ttl_interval_seconds)
            ),
            cache_ttl_seconds=_optional_float(
                change_detection.get("cache_ttl_seconds", defaults.change_detection.cache_ttl_seconds)
            ),
            day_cache_ttl_seconds=_optional_float(change_detection.get("day_cache_ttl_seconds")),
        ),
        scheduler=SchedulerConfig(
            interval_seconds=float(scheduler.get("interval_seconds", defaults.scheduler.interval_seconds)),
        ),
        store=StoreConfig(
            backend=store.get("backend", defaults.store.backend),
            path=store.get("path", defaults.store.path),
            prefix=store.get("prefix", defaults.store.prefix),
        ),
        hook_server=HookServerConfig(
            enabled=_as_bool(hook_server.get("enabled", defaults.hook_server.enabled)),
            host=hook_server.get("host", defaults.hook_server.host),
            port=int(hook_server.get("port", defaults.hook_server.port)),
        ),
        logging=LoggingConfig(
            level=str(logging_section.get("level", defaults.logging.level)),
            json=_as_bool(logging_section.get("json", defaults.logging.json)),
            file=logging_section.get("file") or None,
        ),
    )


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> CollectorConfig:
    """Load collector configuration from config.yaml file.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    COLLECTOR_URL and COLLECTOR_AUTHORIZATION override the file when set.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if "collector" not in yaml_data:
        raise ValueError(
            "Invalid config file: missing 'collector:' section\n"
            "See config.yaml for correct structure"
        )

    section = yaml_data["collector"] or {}
    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        section = _deep_merge(section, overrides)

    config = build_config(section)

    if not config.collector.authorization:
        logger.warning("Collector authorization not configured, deliveries will be unauthenticated")

    logger.debug("Validating configuration...")
    config.validate()
    logger.debug("Configuration validation passed")

    return config

