"""Request-local collector registries and their merged exposition."""

import asyncio
import logging
from itertools import chain
from typing import Dict, Iterable, Iterator, List, Optional

from prometheus_client.core import CollectorRegistry, Metric

logger = logging.getLogger(__name__)

# Labels added per sample by the exposition format itself
_SAMPLE_LABELS = frozenset(['le', 'quantile'])


def _family_error(family: Metric) -> Optional[str]:
    """Why a merged family cannot be exposed, if it cannot."""
    seen = set()
    label_names = None

    for sample in family.samples:
        key = (sample.name, tuple(sorted(sample.labels.items())))
        if key in seen:
            return f"sample {sample.name}{dict(sample.labels)} was collected before with the same name and label values"
        seen.add(key)

        names = frozenset(sample.labels) - _SAMPLE_LABELS
        if label_names is None:
            label_names = names
        elif names != label_names:
            return f"label dimensions inconsistent: {sorted(label_names)} vs {sorted(names)}"
    return None


def _fill_missing_labels(family: Metric) -> None:
    """Give every sample the union of the family's label names, missing as ``""``."""
    names: List[str] = []
    for sample in family.samples:
        for name in sample.labels:
            if name not in _SAMPLE_LABELS and name not in names:
                names.append(name)

    filled = []
    for sample in family.samples:
        missing = [name for name in names if name not in sample.labels]
        if missing:
            labels = dict(sample.labels)
            labels.update((name, '') for name in missing)
            sample = sample._replace(labels=labels)
        filled.append(sample)
    family.samples = filled


def merge_metric_families(families: Iterable[Metric], fill_missing_labels: bool = False) -> Iterator[Metric]:
    """
    Merge families sharing a name and drop the ones that cannot be exposed.

    Several collectors (one per project) emit the same metric names. With
    ``fill_missing_labels`` the merged samples get the union of label names.
    A family with duplicate series or inconsistent label names is left out
    and logged; the rest of the scrape is unaffected.
    """
    merged: Dict[str, Metric] = {}

    for family in families:
        existing = merged.get(family.name)
        if existing is None:
            existing = Metric(family.name, family.documentation, family.type, family.unit)
            merged[family.name] = existing
        elif existing.type != family.type:
            logger.error(
                f"Metric family {family.name} collected as {family.type}, already collected as {existing.type}; dropping"
            )
            continue
        existing.samples.extend(family.samples)

    for family in merged.values():
        if fill_missing_labels:
            _fill_missing_labels(family)
        error = _family_error(family)
        if error:
            logger.error(f"Dropping metric family {family.name}: {error}")
            continue
        yield family


class ScrapeRegistry(CollectorRegistry):
    """
    Registry built for a single scrape and discarded afterwards.

    Collectors with a ``refresh`` coroutine are refreshed together before
    exposition; ``collect`` then never touches the network.
    """

    def __init__(self, fill_missing_labels: bool = False):
        super().__init__(auto_describe=False)
        self.fill_missing_labels = fill_missing_labels
        self._refreshable: List = []

    def register(self, collector) -> None:
        super().register(collector)
        if hasattr(collector, 'refresh'):
            self._refreshable.append(collector)

    async def refresh(self) -> None:
        await asyncio.gather(*(collector.refresh() for collector in self._refreshable))

    def collect(self) -> Iterator[Metric]:
        return merge_metric_families(super().collect(), self.fill_missing_labels)


class Gatherers:
    """Exposes several registries as one, in order."""

    def __init__(self, *registries):
        self.registries = registries

    def collect(self) -> Iterator[Metric]:
        return merge_metric_families(chain.from_iterable(r.collect() for r in self.registries))
