"""Configuration settings for the Stackdriver exporter."""

import os
import re
import yaml
from dataclasses import dataclass, field, fields
from typing import Dict, Any, Tuple

from ..exceptions import ConfigError


_DURATION_PART_RE = re.compile(r'(\d+(?:\.\d+)?)(h|ms|us|µs|ns|m|s)')

_DURATION_UNITS = {
    'h': 3600.0,
    'm': 60.0,
    's': 1.0,
    'ms': 1e-3,
    'us': 1e-6,
    'µs': 1e-6,
    'ns': 1e-9,
}


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go-style duration strings such as
    ``"5m"``, ``"1h30m"``, ``"250ms"`` or ``"3.5s"``.
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Invalid duration: {value!r}")

    text = value.strip()
    if text == '0':
        return 0.0

    position = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != position:
            raise ConfigError(f"Invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ConfigError(f"Invalid duration: {value!r}")
    return total


@dataclass(frozen=True)
class WebConfig:
    """HTTP listener configuration."""
    listen_address: str = "0.0.0.0"
    port: int = 9255
    telemetry_path: str = "/metrics"
    stackdriver_telemetry_path: str = "/metrics"


@dataclass(frozen=True)
class GoogleConfig:
    """Project selection."""
    project_ids: Tuple[str, ...] = ()
    projects_filter: str = ""


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for calls to the Stackdriver API."""
    max_retries: int = 0
    http_timeout: float = 10.0
    max_backoff: float = 5.0
    backoff_jitter: float = 1.0
    retry_statuses: Tuple[int, ...] = (503,)


@dataclass(frozen=True)
class MonitoringConfig:
    """What to collect from Cloud Monitoring and how."""
    metrics_prefixes: Tuple[str, ...] = ()
    metrics_interval: float = 300.0
    metrics_offset: float = 0.0
    metrics_ingest_delay: bool = False
    drop_delegated_projects: bool = False
    filters: Tuple[str, ...] = ()
    aggregate_deltas: bool = False
    aggregate_deltas_ttl: float = 1800.0
    descriptor_cache_ttl: float = 0.0
    descriptor_cache_only_google: bool = True


@dataclass(frozen=True)
class CollectorConfig:
    """Metric shaping options."""
    fill_missing_labels: bool = True


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    output: str = "stdout"


@dataclass(frozen=True)
class ExporterConfig:
    """Main configuration for the exporter, built once at startup."""
    monitoring: MonitoringConfig
    web: WebConfig = field(default_factory=WebConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    stackdriver: RetryConfig = field(default_factory=RetryConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_DURATION_FIELDS = {
    'http_timeout', 'max_backoff', 'backoff_jitter', 'metrics_interval',
    'metrics_offset', 'aggregate_deltas_ttl', 'descriptor_cache_ttl',
}

_LIST_FIELDS = {'project_ids', 'retry_statuses', 'metrics_prefixes', 'filters'}

_BOOL_FIELDS = {
    'metrics_ingest_delay', 'drop_delegated_projects', 'aggregate_deltas',
    'descriptor_cache_only_google', 'fill_missing_labels',
}

_INT_FIELDS = {'port', 'max_retries'}


def load_config(config_file: str) -> ExporterConfig:
    """Load configuration from YAML file."""
    try:
        with open(config_file, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_file}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e

    # Environment variable substitution
    config_data = _substitute_env_vars(config_data)

    return build_config(config_data)


def build_config(config_data: Dict[str, Any]) -> ExporterConfig:
    """Create an ExporterConfig from an already parsed mapping."""
    if not isinstance(config_data, dict):
        raise ConfigError("Configuration root must be a mapping")

    sections = {
        'web': WebConfig,
        'google': GoogleConfig,
        'stackdriver': RetryConfig,
        'monitoring': MonitoringConfig,
        'collector': CollectorConfig,
        'logging': LoggingConfig,
    }

    unknown = set(config_data) - set(sections)
    if unknown:
        raise ConfigError(f"Unknown configuration sections: {sorted(unknown)}")

    built = {
        name: _build_section(cls, name, config_data.get(name) or {})
        for name, cls in sections.items()
    }

    monitoring = built['monitoring']
    if not monitoring.metrics_prefixes:
        raise ConfigError("monitoring.metrics_prefixes must list at least one prefix")
    if any(not prefix for prefix in monitoring.metrics_prefixes):
        raise ConfigError("monitoring.metrics_prefixes must not contain empty prefixes")

    retry = built['stackdriver']
    if retry.max_retries < 0:
        raise ConfigError("stackdriver.max_retries must not be negative")
    if retry.http_timeout <= 0:
        raise ConfigError("stackdriver.http_timeout must be positive")

    return ExporterConfig(**built)


def _build_section(cls, section: str, data: Dict[str, Any]):
    """Convert one YAML section into its dataclass."""
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{section}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown keys in section '{section}': {sorted(unknown)}")

    values = {}
    for key, value in data.items():
        if value is None:
            # Unset environment variables fall back to the default
            continue
        try:
            values[key] = _convert(key, value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {section}.{key}: {value!r}") from e
    return cls(**values)


def _convert(key: str, value: Any) -> Any:
    if key in _DURATION_FIELDS:
        return parse_duration(value)
    if key in _LIST_FIELDS:
        if isinstance(value, str):
            # Comma separated strings come from environment substitution
            if key == "filters":
                value = [value] if value else []
            else:
                value = [v.strip() for v in value.split(",") if v.strip()]
        elif isinstance(value, int):
            value = [value]
        if key == 'retry_statuses':
            return tuple(int(v) for v in value)
        return tuple(str(v) for v in value)
    if key in _BOOL_FIELDS:
        return _to_bool(value)
    if key in _INT_FIELDS:
        return int(value)
    return str(value)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', 'yes', '1', 'on'):
            return True
        if lowered in ('false', 'no', '0', 'off', ''):
            return False
    raise ValueError(f"not a boolean: {value!r}")


def _substitute_env_vars(data):
    """Recursively substitute environment variables in configuration."""
    if isinstance(data, dict):
        return {key: _substitute_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    elif isinstance(data, str) and data.startswith('${') and data.endswith('}'):
        # Extract environment variable name and default value
        env_spec = data[2:-1]  # Remove ${ and }

        if ':' in env_spec:
            env_name, default_value = env_spec.split(':', 1)
        else:
            env_name, default_value = env_spec, None

        return os.getenv(env_name, default_value)
    else:
        return data
