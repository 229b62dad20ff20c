"""Builds one fresh collector registry per scrape."""

import logging
from dataclasses import replace
from typing import Iterable, List, Optional

from .clients.monitoring_client import MonitoringClient
from .collectors.descriptor_cache import DescriptorCache
from .collectors.monitoring_collector import MonitoringCollector, MonitoringCollectorOptions
from .collectors.stats import ScrapeStats, ScrapeStatsCollector
from .config.settings import ExporterConfig
from .delta.counter_store import InMemoryCounterStore
from .delta.histogram_store import InMemoryHistogramStore
from .registry import ScrapeRegistry
from .utils.filters import (
    filter_metric_type_prefixes,
    normalize_metric_type_prefixes,
    parse_metric_extra_filters,
)

logger = logging.getLogger(__name__)


def collector_options_from_config(config: ExporterConfig) -> MonitoringCollectorOptions:
    """Base collection policy, with prefixes normalized and filters parsed."""
    monitoring = config.monitoring
    return MonitoringCollectorOptions(
        metric_type_prefixes=tuple(normalize_metric_type_prefixes(monitoring.metrics_prefixes)),
        extra_filters=tuple(parse_metric_extra_filters(monitoring.filters)),
        request_interval=monitoring.metrics_interval,
        request_offset=monitoring.metrics_offset,
        ingest_delay=monitoring.metrics_ingest_delay,
        fill_missing_labels=config.collector.fill_missing_labels,
        drop_delegated_projects=monitoring.drop_delegated_projects,
        aggregate_deltas=monitoring.aggregate_deltas,
    )


def derive_request_options(
    base: MonitoringCollectorOptions,
    selection: Iterable[str]
) -> MonitoringCollectorOptions:
    """Options for one scrape; the base options are never modified."""
    prefixes = filter_metric_type_prefixes(base.metric_type_prefixes, selection)
    return replace(base, metric_type_prefixes=tuple(prefixes))


class RegistryAssembler:
    """
    Assembles the collectors answering a scrape.

    The client, delta stores, descriptor cache and scrape statistics are
    shared by every scrape; registries and collectors are not.
    """

    def __init__(
        self,
        project_ids: Iterable[str],
        client: MonitoringClient,
        options: MonitoringCollectorOptions,
        counter_store: InMemoryCounterStore,
        histogram_store: InMemoryHistogramStore,
        descriptor_cache: DescriptorCache,
        stats: Optional[ScrapeStats] = None
    ):
        self.project_ids: List[str] = list(project_ids)
        self.client = client
        self.options = options
        self.counter_store = counter_store
        self.histogram_store = histogram_store
        self.descriptor_cache = descriptor_cache
        self.stats = stats or ScrapeStats()

    @classmethod
    def from_config(cls, config: ExporterConfig, project_ids: Iterable[str], client: MonitoringClient) -> 'RegistryAssembler':
        monitoring = config.monitoring
        return cls(
            project_ids=project_ids,
            client=client,
            options=collector_options_from_config(config),
            counter_store=InMemoryCounterStore(monitoring.aggregate_deltas_ttl),
            histogram_store=InMemoryHistogramStore(monitoring.aggregate_deltas_ttl),
            descriptor_cache=DescriptorCache(
                monitoring.descriptor_cache_ttl,
                only_google=monitoring.descriptor_cache_only_google,
            ),
        )

    def build(self, selection: Iterable[str] = ()) -> ScrapeRegistry:
        """
        Build a registry restricted to ``selection`` (all prefixes if empty).

        Raises:
            CollectorInitError: a collector rejected its configuration; no
                registry is returned in that case.
        """
        options = derive_request_options(self.options, selection)

        collectors = [
            MonitoringCollector(
                project_id,
                self.client,
                options,
                self.counter_store,
                self.histogram_store,
                self.descriptor_cache,
                self.stats,
            )
            for project_id in self.project_ids
        ]

        registry = ScrapeRegistry(fill_missing_labels=options.fill_missing_labels)
        registry.register(ScrapeStatsCollector(self.stats, self.project_ids))
        for collector in collectors:
            registry.register(collector)

        logger.debug(
            f"Assembled {len(collectors)} collectors for prefixes {list(options.metric_type_prefixes)}"
        )
        return registry
