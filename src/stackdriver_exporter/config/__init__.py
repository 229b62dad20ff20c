from .settings import (
    CollectorConfig,
    ExporterConfig,
    GoogleConfig,
    LoggingConfig,
    MonitoringConfig,
    RetryConfig,
    WebConfig,
    build_config,
    load_config,
    parse_duration,
)

__all__ = [
    'CollectorConfig',
    'ExporterConfig',
    'GoogleConfig',
    'LoggingConfig',
    'MonitoringConfig',
    'RetryConfig',
    'WebConfig',
    'build_config',
    'load_config',
    'parse_duration',
]
