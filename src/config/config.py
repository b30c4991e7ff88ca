"""Audit bridge configuration from YAML files.

Loads config/config.yaml (base settings) and deep-merges the overlay for the
running environment, config/<APP_ENVIRONMENT>.yaml, when it exists. The
environment defaults to ``local``.

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

from core.resilience.retry import RetryConfig

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG_FILE = CONFIG_DIR / "config.yaml"
DEFAULT_ENVIRONMENT = "local"
ENVIRONMENTS = ("local", "production")
SHARD_ERROR_POLICIES = ("continue", "abort")

# Kinesis GetRecords accepts Limit in [1, 10000]
MAX_FETCH_LIMIT = 10000


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables."""
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


def _optional_int(value: Any) -> Optional[int]:
    # Env expansion yields "" for unset optional values
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class BridgeConfig:
    """Audit bridge configuration.

    Configuration structure:
        bridge:
          stream:
            name: audit-events
            region: us-east-1
            endpoint_url: http://localhost:4566   # LocalStack override, optional
          reader:
            poll_interval_ms: 200
            fetch_limit: 1000                     # optional
            on_shard_error: continue              # or abort
          sink:
            table_name: AuditLog
          retry:
            max_attempts: 5
            base_delay: 0.5
            max_delay: 10

    All timing values in milliseconds unless otherwise noted.
    """

    environment: str = DEFAULT_ENVIRONMENT

    # =========================================================================
    # STREAM SETTINGS
    # =========================================================================
    stream_name: str = ""
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None

    # =========================================================================
    # SHARD READER SETTINGS
    # =========================================================================
    # Pause between GetRecords calls on one shard (Kinesis allows 5 reads/s per shard)
    poll_interval_ms: int = 200
    fetch_limit: Optional[int] = None
    on_shard_error: str = "continue"

    # =========================================================================
    # SINK SETTINGS
    # =========================================================================
    dynamo_table_name: str = "AuditLog"

    # =========================================================================
    # RETRY SETTINGS (applied by the retrying stream client and the sink)
    # =========================================================================
    retry: Dict[str, Any] = field(default_factory=dict)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    def get_retry_config(self) -> RetryConfig:
        return RetryConfig(**self.retry)

    def validate(self) -> None:
        """Validate required fields and numeric ranges."""
        if not self.stream_name:
            raise ValueError("stream.name is required in bridge section")
        if not self.dynamo_table_name:
            raise ValueError("sink.table_name is required in bridge section")

        self._validate_enum("environment", self.environment, ENVIRONMENTS)
        self._validate_enum("reader.on_shard_error", self.on_shard_error, SHARD_ERROR_POLICIES)

        if self.poll_interval_ms < 0:
            raise ValueError(
                f"reader.poll_interval_ms must be >= 0, got {self.poll_interval_ms}"
            )
        if self.fetch_limit is not None and not (1 <= self.fetch_limit <= MAX_FETCH_LIMIT):
            raise ValueError(
                f"reader.fetch_limit must be between 1 and {MAX_FETCH_LIMIT}, "
                f"got {self.fetch_limit}"
            )

        unknown = set(self.retry) - {"max_attempts", "base_delay", "max_delay", "exponential_base"}
        if unknown:
            raise ValueError(f"retry: unknown settings {sorted(unknown)}")
        # RetryConfig validates max_attempts and coerces types
        self.get_retry_config()

    @staticmethod
    def _validate_enum(key: str, value: Any, valid_values: tuple) -> None:
        if value not in valid_values:
            raise ValueError(f"{key} must be one of {list(valid_values)}, got '{value}'")


def load_config(
    config_path: Optional[Path] = None,
    environment: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> BridgeConfig:
    """Load bridge configuration.

    Sources, lowest to highest priority:
    1. Base file (config/config.yaml, or config_path)
    2. Environment overlay (<environment>.yaml next to the base file)
    3. overrides dict (tests, CLI flags)

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    environment = environment or os.getenv("APP_ENVIRONMENT", DEFAULT_ENVIRONMENT)
    environment = environment.strip().lower()

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = load_yaml(config_path)

    environment_file = config_path.parent / f"{environment}.yaml"
    if environment_file.exists():
        logger.info(f"Using environment overlay: {environment_file}")
        yaml_data = _deep_merge(yaml_data, load_yaml(environment_file))

    yaml_data = _expand_env_vars(yaml_data)

    if "bridge" not in yaml_data:
        raise ValueError(
            "Invalid config file: missing 'bridge:' section\n"
            "See config/config.yaml for correct structure"
        )

    bridge = yaml_data["bridge"] or {}
    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        bridge = _deep_merge(bridge, overrides)

    stream = bridge.get("stream", {})
    reader = bridge.get("reader", {})
    sink = bridge.get("sink", {})

    config = BridgeConfig(
        environment=environment,
        stream_name=stream.get("name", ""),
        region=stream.get("region") or "us-east-1",
        endpoint_url=stream.get("endpoint_url") or None,
        poll_interval_ms=int(reader.get("poll_interval_ms", 200)),
        fetch_limit=_optional_int(reader.get("fetch_limit")),
        on_shard_error=reader.get("on_shard_error", "continue"),
        dynamo_table_name=sink.get("table_name", "AuditLog"),
        retry=dict(bridge.get("retry") or {}),
    )

    logger.debug(
        "Configuration loaded",
        extra={
            "stream": config.stream_name,
            "region": config.region,
            "endpoint_url": config.endpoint_url,
            "poll_interval_ms": config.poll_interval_ms,
            "table": config.dynamo_table_name,
        },
    )

    config.validate()
    return config


_bridge_config: Optional[BridgeConfig] = None


def get_config() -> BridgeConfig:
    """Get or load the singleton bridge config instance."""
    global _bridge_config
    if _bridge_config is None:
        _bridge_config = load_config()
    return _bridge_config


def set_config(config: BridgeConfig) -> None:
    """Set the singleton bridge config instance (useful for testing)."""
    global _bridge_config
    _bridge_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _bridge_config
    _bridge_config = None


__all__: List[str] = [
    "BridgeConfig",
    "DEFAULT_CONFIG_FILE",
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
]
