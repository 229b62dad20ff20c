"""Conversion of Cloud Monitoring time series into Prometheus metric families."""

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from prometheus_client.core import Metric
from prometheus_client.utils import floatToGoString

from ..delta.counter_store import InMemoryCounterStore
from ..delta.histogram_store import InMemoryHistogramStore
from .const_metric import COUNTER, GAUGE, ConstMetric, HistogramMetric

logger = logging.getLogger(__name__)

NAMESPACE = "stackdriver"

_NAME_SPLIT_RE = re.compile(r'[^a-zA-Z0-9]+')
_RFC3339_RE = re.compile(
    r'^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$'
)


def normalize_metric_name(name: str) -> str:
    """Lowercase and join the alphanumeric words of a name with underscores."""
    return '_'.join(word for word in _NAME_SPLIT_RE.split(name.lower()) if word)


def build_fq_name(resource_type: str, metric_type: str) -> str:
    """``stackdriver_<resource type>_<metric type>``, normalized."""
    parts = [NAMESPACE, normalize_metric_name(resource_type), normalize_metric_name(metric_type)]
    return '_'.join(part for part in parts if part)


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, nanoseconds included."""
    match = _RFC3339_RE.match(value or '')
    if not match:
        raise ValueError(f"Invalid RFC 3339 timestamp: {value!r}")

    base, fraction, zone = match.groups()
    micros = (fraction or '0')[:6].ljust(6, '0')
    offset = '+00:00' if zone == 'Z' else zone
    return datetime.fromisoformat(f"{base}.{micros}{offset}").astimezone(timezone.utc)


def generate_histogram_buckets(distribution: Dict[str, Any]) -> Dict[float, int]:
    """
    Cumulative bucket counts keyed by upper bound, ``+Inf`` last.

    Cloud Monitoring buckets are bounded below by the previous upper bound,
    Prometheus buckets by zero, so counts are accumulated. Buckets without
    counts carry the running total.
    """
    options = distribution.get('bucketOptions') or {}

    if 'explicitBuckets' in options:
        bounds = [float(b) for b in options['explicitBuckets'].get('bounds', [])]
    elif 'linearBuckets' in options:
        linear = options['linearBuckets']
        num = int(linear.get('numFiniteBuckets', 0))
        width = float(linear.get('width', 0))
        offset = float(linear.get('offset', 0))
        bounds = [offset + i * width for i in range(num + 1)]
    elif 'exponentialBuckets' in options:
        exponential = options['exponentialBuckets']
        num = int(exponential.get('numFiniteBuckets', 0))
        growth_factor = float(exponential.get('growthFactor', 0))
        scale = float(exponential.get('scale', 0))
        bounds = [scale * growth_factor ** i for i in range(num + 1)]
    else:
        raise ValueError("Unknown distribution buckets")

    bucket_keys = bounds + [math.inf]
    counts = [int(c) for c in distribution.get('bucketCounts', [])]

    buckets = {}
    last = 0
    for i, bound in enumerate(bucket_keys):
        if i < len(counts):
            last += counts[i]
        # Duplicate bounds keep the highest running total
        buckets[bound] = last
    return buckets


def fill_missing_labels(metrics: List[Any]) -> List[Any]:
    """Give every metric the union of label keys, missing values as ``""``."""
    all_keys: List[str] = []
    for metric in metrics:
        for key in metric.label_keys:
            if key not in all_keys:
                all_keys.append(key)

    for metric in metrics:
        if len(metric.label_keys) == len(all_keys):
            continue
        present = set(metric.label_keys)
        for key in all_keys:
            if key not in present:
                metric.label_keys.append(key)
                metric.label_values.append('')
    return metrics


def _sample_timestamp(report_time: Optional[datetime]) -> Optional[float]:
    return report_time.timestamp() if report_time else None


def _family_name(fq_name: str, typ: str) -> str:
    if typ == COUNTER and fq_name.endswith('_total'):
        return fq_name[:-6]
    return fq_name


def const_metric_family(fq_name: str, documentation: str, metrics: List[ConstMetric]) -> Metric:
    typ = metrics[0].value_type
    family = Metric(_family_name(fq_name, typ), documentation, typ)
    sample_name = family.name + '_total' if typ == COUNTER else family.name

    for metric in metrics:
        family.add_sample(
            sample_name,
            dict(zip(metric.label_keys, metric.label_values)),
            metric.value,
            timestamp=_sample_timestamp(metric.report_time),
        )
    return family


def histogram_family(fq_name: str, documentation: str, metrics: List[HistogramMetric]) -> Metric:
    family = Metric(fq_name, documentation, 'histogram')

    for metric in metrics:
        labels = dict(zip(metric.label_keys, metric.label_values))
        timestamp = _sample_timestamp(metric.report_time)
        for bound in sorted(metric.buckets):
            family.add_sample(
                family.name + '_bucket',
                dict(labels, le=floatToGoString(bound)),
                metric.buckets[bound],
                timestamp=timestamp,
            )
        family.add_sample(family.name + '_count', labels, metric.count, timestamp=timestamp)
        family.add_sample(family.name + '_sum', labels, metric.sum, timestamp=timestamp)
    return family


class TimeSeriesMetrics:
    """
    Buffers the samples of one metric descriptor during a scrape.

    DELTA samples go to the delta stores when aggregation is enabled and are
    read back, with everything still within the TTL, on ``complete``.
    """

    def __init__(
        self,
        metric_descriptor: Dict[str, Any],
        fill_missing_labels: bool,
        aggregate_deltas: bool,
        counter_store: InMemoryCounterStore,
        histogram_store: InMemoryHistogramStore
    ):
        self.metric_descriptor = metric_descriptor
        self.descriptor_name = metric_descriptor.get('name') or metric_descriptor.get('type', '')
        self.fill_missing_labels = fill_missing_labels
        self.aggregate_deltas = aggregate_deltas
        self.counter_store = counter_store
        self.histogram_store = histogram_store

        self.const_metrics: Dict[str, List[ConstMetric]] = {}
        self.histogram_metrics: Dict[str, List[HistogramMetric]] = {}

    @property
    def documentation(self) -> str:
        description = self.metric_descriptor.get('description')
        return description or f"Google Stackdriver Monitoring metric {self.metric_descriptor.get('type', '')}"

    def _aggregated(self, metric_kind: str) -> bool:
        return self.aggregate_deltas and metric_kind == 'DELTA'

    def collect_const_metric(self, metric: ConstMetric, metric_kind: str) -> None:
        if self._aggregated(metric_kind):
            self.counter_store.increment(self.descriptor_name, metric)
            return
        self.const_metrics.setdefault(metric.fq_name, []).append(metric)

    def collect_histogram(self, metric: HistogramMetric, metric_kind: str) -> None:
        if self._aggregated(metric_kind):
            self.histogram_store.increment(self.descriptor_name, metric)
            return
        self.histogram_metrics.setdefault(metric.fq_name, []).append(metric)

    def _group(self, target: Dict[str, List[Any]], metrics: List[Any]) -> None:
        for metric in metrics:
            target.setdefault(metric.fq_name, []).append(metric)

    def complete(self) -> List[Metric]:
        if self.aggregate_deltas:
            self._group(self.const_metrics, self.counter_store.list_metrics(self.descriptor_name))
            self._group(self.histogram_metrics, self.histogram_store.list_metrics(self.descriptor_name))

        families = []
        for fq_name, metrics in self.const_metrics.items():
            if self.fill_missing_labels:
                fill_missing_labels(metrics)
            families.append(const_metric_family(fq_name, self.documentation, metrics))

        for fq_name, metrics in self.histogram_metrics.items():
            if self.fill_missing_labels:
                fill_missing_labels(metrics)
            families.append(histogram_family(fq_name, self.documentation, metrics))

        return families


def newest_point(points: List[Dict[str, Any]]):
    """The point with the latest end time, with that time."""
    newest = None
    newest_end_time = None
    for point in points:
        end_time = parse_timestamp(point['interval']['endTime'])
        if newest_end_time is None or end_time > newest_end_time:
            newest, newest_end_time = point, end_time
    return newest, newest_end_time
