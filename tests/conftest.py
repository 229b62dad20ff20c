"""Pytest configuration and shared fixtures."""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from stackdriver_exporter.collectors.descriptor_cache import DescriptorCache
from stackdriver_exporter.collectors.monitoring_collector import MonitoringCollectorOptions
from stackdriver_exporter.collectors.stats import ScrapeStats
from stackdriver_exporter.config.settings import ExporterConfig, build_config
from stackdriver_exporter.delta.counter_store import InMemoryCounterStore
from stackdriver_exporter.delta.histogram_store import InMemoryHistogramStore

PROJECT_ID = "test-project"

CPU_TYPE = "compute.googleapis.com/instance/cpu/utilization"
DISK_TYPE = "compute.googleapis.com/instance/disk/read_ops_count"
LATENCY_TYPE = "loadbalancing.googleapis.com/https/total_latencies"
SENT_TYPE = "pubsub.googleapis.com/subscription/sent_message_count"

CPU_METRIC = "stackdriver_gce_instance_compute_googleapis_com_instance_cpu_utilization"
DISK_METRIC = "stackdriver_gce_instance_compute_googleapis_com_instance_disk_read_ops_count"
LATENCY_METRIC = "stackdriver_https_lb_rule_loadbalancing_googleapis_com_https_total_latencies"
SENT_METRIC = "stackdriver_pubsub_subscription_pubsub_googleapis_com_subscription_sent_message_count"


class FakeMonitoringClient:
    """In-memory stand-in for MonitoringClient."""

    def __init__(
        self,
        descriptors: List[Dict[str, Any]],
        time_series: Dict[str, List[List[Dict[str, Any]]]],
        error: Optional[Exception] = None
    ):
        self.descriptors = descriptors
        self.time_series = time_series
        self.error = error
        self.descriptor_calls: List[tuple] = []
        self.time_series_calls: List[tuple] = []

    async def list_metric_descriptors(self, project_id: str, filter_: str) -> List[Dict[str, Any]]:
        self.descriptor_calls.append((project_id, filter_))
        if self.error:
            raise self.error
        prefix = re.search(r'starts_with\("([^"]*)"\)', filter_).group(1)
        return [dict(d) for d in self.descriptors if d['type'].startswith(prefix)]

    async def iter_time_series(self, project_id, filter_, start_time, end_time):
        self.time_series_calls.append((project_id, filter_, start_time, end_time))
        metric_type = re.search(r'metric\.type="([^"]*)"', filter_).group(1)
        for page in self.time_series.get(metric_type, [[]]):
            yield page


def make_descriptor(metric_type: str, metric_kind: str, value_type: str, unit: str = "1", **extra) -> Dict[str, Any]:
    descriptor = {
        'name': f"projects/{PROJECT_ID}/metricDescriptors/{metric_type}",
        'type': metric_type,
        'metricKind': metric_kind,
        'valueType': value_type,
        'unit': unit,
        'description': f"Description of {metric_type}.",
    }
    descriptor.update(extra)
    return descriptor


def make_time_series(
    metric_type: str,
    resource_type: str,
    metric_kind: str,
    value_type: str,
    points: List[tuple],
    metric_labels: Optional[Dict[str, str]] = None,
    resource_labels: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """``points`` are (end time, value) pairs, value already in API form."""
    return {
        'metric': {'type': metric_type, 'labels': metric_labels or {}},
        'resource': {
            'type': resource_type,
            'labels': resource_labels if resource_labels is not None else {'project_id': PROJECT_ID},
        },
        'metricKind': metric_kind,
        'valueType': value_type,
        'points': [
            {'interval': {'startTime': end, 'endTime': end}, 'value': value}
            for end, value in points
        ],
    }


@pytest.fixture
def fake_client_factory():
    return FakeMonitoringClient


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_config() -> ExporterConfig:
    """Create test configuration."""
    return build_config({
        'google': {'project_ids': [PROJECT_ID]},
        'stackdriver': {'max_retries': 2, 'backoff_jitter': '10ms', 'max_backoff': '50ms'},
        'monitoring': {
            'metrics_prefixes': [
                'compute.googleapis.com/',
                'compute.googleapis.com/instance/cpu',
                'pubsub.googleapis.com/',
            ],
            'filters': ['pubsub.googleapis.com/subscription:resource.labels.subscription_id="sub-1"'],
        },
        'logging': {'format': 'text'},
    })


@pytest.fixture
def collector_options() -> MonitoringCollectorOptions:
    return MonitoringCollectorOptions(
        metric_type_prefixes=('compute.googleapis.com/', 'pubsub.googleapis.com/'),
    )


@pytest.fixture
def counter_store() -> InMemoryCounterStore:
    return InMemoryCounterStore(ttl=1800)


@pytest.fixture
def histogram_store() -> InMemoryHistogramStore:
    return InMemoryHistogramStore(ttl=1800)


@pytest.fixture
def descriptor_cache() -> DescriptorCache:
    return DescriptorCache(ttl=0)


@pytest.fixture
def scrape_stats() -> ScrapeStats:
    return ScrapeStats()


@pytest.fixture
def sample_descriptors() -> List[Dict[str, Any]]:
    return [
        make_descriptor(CPU_TYPE, 'GAUGE', 'DOUBLE', unit='10^2.%'),
        make_descriptor(DISK_TYPE, 'CUMULATIVE', 'INT64'),
        make_descriptor(SENT_TYPE, 'DELTA', 'INT64'),
    ]


@pytest.fixture
def sample_time_series() -> Dict[str, List[List[Dict[str, Any]]]]:
    return {
        CPU_TYPE: [[
            make_time_series(
                CPU_TYPE, 'gce_instance', 'GAUGE', 'DOUBLE',
                [('2024-01-01T11:59:00Z', {'doubleValue': 0.5}),
                 ('2024-01-01T11:58:00Z', {'doubleValue': 0.1})],
                metric_labels={'instance_name': 'vm-1'},
                resource_labels={'project_id': PROJECT_ID, 'zone': 'us-central1-a', 'instance_id': '123'},
            ),
        ]],
        DISK_TYPE: [[
            make_time_series(
                DISK_TYPE, 'gce_instance', 'CUMULATIVE', 'INT64',
                [('2024-01-01T11:59:00Z', {'int64Value': '42'})],
                metric_labels={'device_name': 'disk-1'},
                resource_labels={'project_id': PROJECT_ID, 'zone': 'us-central1-a', 'instance_id': '123'},
            ),
        ]],
        SENT_TYPE: [[
            make_time_series(
                SENT_TYPE, 'pubsub_subscription', 'DELTA', 'INT64',
                [('2024-01-01T11:59:00Z', {'int64Value': '7'})],
                resource_labels={'project_id': PROJECT_ID, 'subscription_id': 'sub-1'},
            ),
        ]],
    }


@pytest.fixture
def fake_client(fake_client_factory, sample_descriptors, sample_time_series):
    return fake_client_factory(sample_descriptors, sample_time_series)
