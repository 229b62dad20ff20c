"""Per-project collector of Google Cloud Monitoring metrics."""

import asyncio
import aiohttp
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Tuple

from prometheus_client.core import Metric

from ..clients.monitoring_client import MonitoringClient
from ..config.settings import parse_duration
from ..delta.counter_store import InMemoryCounterStore
from ..delta.histogram_store import InMemoryHistogramStore
from ..exceptions import CollectorInitError, ExporterError
from ..utils.filters import MetricFilter
from .const_metric import COUNTER, GAUGE, ConstMetric, HistogramMetric
from .descriptor_cache import DescriptorCache
from .stats import ScrapeStats
from .time_series import (
    TimeSeriesMetrics,
    build_fq_name,
    generate_histogram_buckets,
    newest_point,
    normalize_metric_name,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitoringCollectorOptions:
    """Immutable collection policy shared by every collector of a scrape."""
    metric_type_prefixes: Tuple[str, ...] = ()
    extra_filters: Tuple[MetricFilter, ...] = ()
    request_interval: float = 300.0
    request_offset: float = 0.0
    ingest_delay: bool = False
    fill_missing_labels: bool = True
    drop_delegated_projects: bool = False
    aggregate_deltas: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_filter_query(query: str) -> None:
    """Reject filter expressions that cannot be well formed."""
    if not query.strip():
        raise CollectorInitError("Empty filter query")

    depth = 0
    in_string = False
    escaped = False
    for char in query:
        if escaped:
            escaped = False
        elif char == '\\':
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif not in_string and char == '(':
            depth += 1
        elif not in_string and char == ')':
            depth -= 1
            if depth < 0:
                raise CollectorInitError(f"Unbalanced parentheses in filter query: {query}")

    if in_string:
        raise CollectorInitError(f"Unterminated string in filter query: {query}")
    if depth:
        raise CollectorInitError(f"Unbalanced parentheses in filter query: {query}")


class MonitoringCollector:
    """
    Collects the metrics of one project for one scrape.

    ``refresh`` performs all API calls and buffers the resulting families;
    ``collect`` only hands them to the registry. If anything fails during
    ``refresh`` none of the project's Stackdriver metrics are exported for
    that scrape, only the scrape error statistics.
    """

    def __init__(
        self,
        project_id: str,
        client: MonitoringClient,
        options: MonitoringCollectorOptions,
        counter_store: InMemoryCounterStore,
        histogram_store: InMemoryHistogramStore,
        descriptor_cache: DescriptorCache,
        stats: ScrapeStats,
        clock: Callable[[], datetime] = _utcnow
    ):
        if not project_id:
            raise CollectorInitError("Empty project ID")
        for prefix in options.metric_type_prefixes:
            if not prefix:
                raise CollectorInitError("Empty metric type prefix")
        for extra_filter in options.extra_filters:
            if not extra_filter.targeted_metric_prefix:
                raise CollectorInitError("Extra filter without a targeted metric prefix")
            validate_filter_query(extra_filter.filter_query)

        self.project_id = project_id
        self.client = client
        self.options = options
        self.counter_store = counter_store
        self.histogram_store = histogram_store
        self.descriptor_cache = descriptor_cache
        self.stats = stats
        self._clock = clock
        self._families: List[Metric] = []

    def collect(self):
        return list(self._families)

    async def refresh(self) -> None:
        begun = time.time()
        start = time.monotonic()
        error = False

        try:
            self._families = await self._collect_families()
        except (ExporterError, aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
            logger.error(
                f"Error while getting Google Stackdriver Monitoring metrics for project {self.project_id}: {e}"
            )
            self._families = []
            error = True

        self.stats.record_scrape(self.project_id, begun, time.monotonic() - start, error)

    async def _collect_families(self) -> List[Metric]:
        results = await asyncio.gather(
            *(self._collect_prefix(prefix) for prefix in self.options.metric_type_prefixes)
        )
        return [family for families in results for family in families]

    async def _collect_prefix(self, prefix: str) -> List[Metric]:
        descriptors = await self._metric_descriptors(prefix)
        results = await asyncio.gather(
            *(self._collect_descriptor(descriptor) for descriptor in descriptors)
        )
        return [family for families in results for family in families]

    async def _metric_descriptors(self, prefix: str) -> List[Dict[str, Any]]:
        cached = self.descriptor_cache.lookup(self.project_id, prefix)
        if cached is not None:
            logger.debug(f"Using cached metric descriptors for {self.project_id} {prefix}")
            return cached

        filter_ = f'metric.type = starts_with("{prefix}")'
        if self.options.drop_delegated_projects:
            filter_ = f'project = "{self.project_id}" AND {filter_}'

        self.stats.api_call(self.project_id)
        descriptors = await self.client.list_metric_descriptors(self.project_id, filter_)
        self.descriptor_cache.store(self.project_id, prefix, descriptors)
        return descriptors

    def _time_window(self, descriptor: Dict[str, Any]) -> Tuple[datetime, datetime]:
        end_time = self._clock() - timedelta(seconds=self.options.request_offset)
        start_time = end_time - timedelta(seconds=self.options.request_interval)

        ingest_delay = (descriptor.get('metadata') or {}).get('ingestDelay')
        if self.options.ingest_delay and ingest_delay:
            delay = timedelta(seconds=parse_duration(ingest_delay))
            start_time -= delay
            end_time -= delay

        return start_time, end_time

    def time_series_filter(self, metric_type: str) -> str:
        filter_ = f'metric.type="{metric_type}"'
        if self.options.drop_delegated_projects:
            filter_ = f'project="{self.project_id}" AND {filter_}'

        for extra_filter in self.options.extra_filters:
            if metric_type.startswith(extra_filter.targeted_metric_prefix):
                filter_ = f"{filter_} AND ({extra_filter.filter_query})"
        return filter_

    async def _collect_descriptor(self, descriptor: Dict[str, Any]) -> List[Metric]:
        start_time, end_time = self._time_window(descriptor)
        filter_ = self.time_series_filter(descriptor['type'])

        metrics = TimeSeriesMetrics(
            descriptor,
            fill_missing_labels=self.options.fill_missing_labels,
            aggregate_deltas=self.options.aggregate_deltas,
            counter_store=self.counter_store,
            histogram_store=self.histogram_store,
        )

        self.stats.api_call(self.project_id)
        async for page in self.client.iter_time_series(self.project_id, filter_, start_time, end_time):
            self.report_time_series(page, descriptor, metrics)

        return metrics.complete()

    def _labels(self, time_series: Dict[str, Any], descriptor: Dict[str, Any]) -> Tuple[List[str], List[str]]:
        label_keys = ['unit']
        label_values = [descriptor.get('unit', '')]

        # Metric labels first, then monitored resource labels, first key wins
        for source in (time_series.get('metric', {}), time_series.get('resource', {})):
            for key, value in (source.get('labels') or {}).items():
                key = normalize_metric_name(key)
                if key not in label_keys:
                    label_keys.append(key)
                    label_values.append(value)
        return label_keys, label_values

    def _is_delegated(self, label_keys: List[str], label_values: List[str]) -> bool:
        for key, value in zip(label_keys, label_values):
            if key == 'project_id' and value != self.project_id:
                return True
        return False

    def report_time_series(
        self,
        page: List[Dict[str, Any]],
        descriptor: Dict[str, Any],
        metrics: TimeSeriesMetrics
    ) -> None:
        for time_series in page:
            point, report_time = newest_point(time_series.get('points', []))
            if point is None:
                continue

            label_keys, label_values = self._labels(time_series, descriptor)
            if self.options.drop_delegated_projects and self._is_delegated(label_keys, label_values):
                continue

            metric_kind = time_series.get('metricKind')
            if metric_kind == 'GAUGE':
                value_type = GAUGE
            elif metric_kind == 'DELTA':
                value_type = COUNTER if self.options.aggregate_deltas else GAUGE
            elif metric_kind == 'CUMULATIVE':
                value_type = COUNTER
            else:
                continue

            fq_name = build_fq_name(
                time_series.get('resource', {}).get('type', ''),
                time_series.get('metric', {}).get('type', descriptor['type']),
            )
            value = point.get('value', {})
            value_kind = time_series.get('valueType')

            if value_kind == 'DISTRIBUTION':
                distribution = value.get('distributionValue', {})
                try:
                    buckets = generate_histogram_buckets(distribution)
                except ValueError as e:
                    logger.debug(f"Discarding {fq_name}: {e}")
                    continue
                count = int(distribution.get('count', 0))
                metrics.collect_histogram(HistogramMetric(
                    fq_name=fq_name,
                    label_keys=label_keys,
                    count=count,
                    sum=float(distribution.get('mean', 0.0)) * count,
                    buckets=buckets,
                    label_values=label_values,
                    report_time=report_time,
                ), metric_kind)
                continue

            if value_kind == 'BOOL':
                metric_value = 1.0 if value.get('boolValue') else 0.0
            elif value_kind == 'INT64':
                metric_value = float(int(value.get('int64Value', 0)))
            elif value_kind == 'DOUBLE':
                metric_value = float(value.get('doubleValue', 0.0))
            else:
                logger.debug(f"Discarding {value_kind} value type for {fq_name}")
                continue

            metrics.collect_const_metric(ConstMetric(
                fq_name=fq_name,
                label_keys=label_keys,
                value_type=value_type,
                value=metric_value,
                label_values=label_values,
                report_time=report_time,
            ), metric_kind)
