"""Tests for request-local registries and family merging."""

from unittest.mock import AsyncMock

import pytest
from prometheus_client import CollectorRegistry
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, HistogramMetricFamily

from stackdriver_exporter.registry import Gatherers, ScrapeRegistry, merge_metric_families


def gauge(name, labels, values):
    family = GaugeMetricFamily(name, f"{name} help", labels=list(labels))
    for label_values, value in values:
        family.add_metric(list(label_values), value)
    return family


class StaticCollector:
    def __init__(self, *families):
        self.families = families

    def collect(self):
        return list(self.families)


class RefreshingCollector(StaticCollector):
    def __init__(self, *families):
        super().__init__(*families)
        self.refresh = AsyncMock()


@pytest.mark.unit
class TestMergeMetricFamilies:
    """Test merging families across collectors."""

    def test_same_name_is_merged(self):
        families = [
            gauge('stackdriver_x', ['project_id'], [(['p1'], 1)]),
            gauge('stackdriver_x', ['project_id'], [(['p2'], 2)]),
        ]

        [family] = list(merge_metric_families(families))

        assert [(s.labels['project_id'], s.value) for s in family.samples] == [('p1', 1), ('p2', 2)]

    def test_duplicate_series_drops_family(self):
        families = [
            gauge('stackdriver_x', ['project_id'], [(['p1'], 1)]),
            gauge('stackdriver_x', ['project_id'], [(['p1'], 2)]),
            gauge('stackdriver_y', ['project_id'], [(['p1'], 3)]),
        ]

        merged = list(merge_metric_families(families))

        assert [f.name for f in merged] == ['stackdriver_y']

    def test_inconsistent_labels_drop_family(self):
        families = [
            gauge('stackdriver_x', ['a'], [(['1'], 1)]),
            gauge('stackdriver_x', ['b'], [(['1'], 2)]),
            gauge('stackdriver_y', ['a'], [(['1'], 3)]),
        ]

        merged = list(merge_metric_families(families))

        assert [f.name for f in merged] == ['stackdriver_y']

    def test_type_conflict_keeps_first(self):
        counter = CounterMetricFamily('stackdriver_x', 'help', labels=['a'])
        counter.add_metric(['2'], 2)
        families = [gauge('stackdriver_x', ['a'], [(['1'], 1)]), counter]

        [family] = list(merge_metric_families(families))

        assert family.type == 'gauge'
        assert len(family.samples) == 1

    def test_histogram_le_label_is_allowed(self):
        histogram = HistogramMetricFamily('stackdriver_h', 'help', labels=['a'])
        histogram.add_metric(['1'], buckets=[('1.0', 1), ('+Inf', 2)], sum_value=3)

        [family] = list(merge_metric_families([histogram]))

        assert family.name == 'stackdriver_h'


@pytest.mark.unit
class TestScrapeRegistry:
    """Test the per-scrape registry."""

    @pytest.mark.asyncio
    async def test_refresh_reaches_refreshable_collectors(self):
        registry = ScrapeRegistry()
        refreshing = RefreshingCollector()
        registry.register(StaticCollector())
        registry.register(refreshing)

        await registry.refresh()

        refreshing.refresh.assert_awaited_once()

    def test_collect_merges_collectors(self):
        registry = ScrapeRegistry()
        registry.register(StaticCollector(gauge('stackdriver_x', ['project_id'], [(['p1'], 1)])))
        registry.register(StaticCollector(gauge('stackdriver_x', ['project_id'], [(['p2'], 2)])))

        [family] = list(registry.collect())

        assert len(family.samples) == 2

    def test_gatherers_expose_registries_in_order(self):
        process = CollectorRegistry(auto_describe=False)
        process.register(StaticCollector(gauge('process_metric', [], [([], 1)])))
        scrape = ScrapeRegistry()
        scrape.register(StaticCollector(gauge('stackdriver_x', [], [([], 2)])))

        names = [f.name for f in Gatherers(process, scrape).collect()]

        assert names == ['process_metric', 'stackdriver_x']


@pytest.mark.unit
class TestFillMissingLabelsAcrossCollectors:
    """Test label filling on families merged from several projects."""

    def collectors(self):
        return (
            StaticCollector(gauge('stackdriver_cpu', ['project_id', 'instance_name'], [(['p1', 'vm-1'], 1)])),
            StaticCollector(gauge('stackdriver_cpu', ['project_id'], [(['p2'], 2)])),
        )

    def test_missing_labels_are_filled_when_enabled(self):
        registry = ScrapeRegistry(fill_missing_labels=True)
        for collector in self.collectors():
            registry.register(collector)

        [family] = list(registry.collect())

        assert [s.labels for s in family.samples] == [
            {'project_id': 'p1', 'instance_name': 'vm-1'},
            {'project_id': 'p2', 'instance_name': ''},
        ]

    def test_family_is_dropped_when_disabled(self):
        registry = ScrapeRegistry()
        for collector in self.collectors():
            registry.register(collector)

        assert list(registry.collect()) == []

    def test_histogram_le_is_not_spread_to_count_and_sum(self):
        histogram = HistogramMetricFamily('stackdriver_h', 'help', labels=['project_id'])
        histogram.add_metric(['p1'], buckets=[('+Inf', 2)], sum_value=3)

        [family] = list(merge_metric_families([histogram], fill_missing_labels=True))

        count = next(s for s in family.samples if s.name == 'stackdriver_h_count')
        assert count.labels == {'project_id': 'p1'}
