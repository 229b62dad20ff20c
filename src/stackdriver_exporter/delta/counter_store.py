"""In-memory store turning DELTA gauges into counters."""

from ..collectors.const_metric import ConstMetric
from .store import InMemoryDeltaStore


class InMemoryCounterStore(InMemoryDeltaStore):
    """Sums DELTA values of each series across scrapes."""

    kind = "counter"

    def _merge(self, existing: ConstMetric, current: ConstMetric) -> None:
        current.value += existing.value
