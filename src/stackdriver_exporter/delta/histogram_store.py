"""In-memory store turning DELTA distributions into cumulative histograms."""

from ..collectors.const_metric import HistogramMetric
from .store import InMemoryDeltaStore


class InMemoryHistogramStore(InMemoryDeltaStore):
    """Adds up counts, sums and bucket counts of each distribution series."""

    kind = "histogram"

    def _merge(self, existing: HistogramMetric, current: HistogramMetric) -> None:
        current.count += existing.count
        current.sum += existing.sum
        for bound in current.buckets:
            current.buckets[bound] += existing.buckets.get(bound, 0)
