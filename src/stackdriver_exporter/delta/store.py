"""Shared machinery of the in-memory delta stores."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List

from ..collectors.const_metric import fingerprint

logger = logging.getLogger(__name__)


@dataclass
class CollectedMetric:
    """An accumulated series and when it was last refreshed."""
    metric: Any
    last_collected_at: float


class _MetricEntry:
    """All series of one project-qualified metric descriptor."""

    def __init__(self):
        self.collected: Dict[Hashable, CollectedMetric] = {}
        self.lock = threading.Lock()


class InMemoryDeltaStore:
    """
    Accumulates DELTA samples per series so they can be exported as counters.

    Entries are grouped by descriptor name (``projects/<id>/metricDescriptors/<type>``),
    each group with its own lock, so unrelated descriptors never contend.
    Series not refreshed within ``ttl`` seconds are dropped lazily when the
    descriptor is read, and an increment on a stale series starts it over.
    """

    kind = "delta"

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, _MetricEntry] = {}
        self._lock = threading.Lock()

    def _entry(self, descriptor_name: str) -> _MetricEntry:
        with self._lock:
            entry = self._entries.get(descriptor_name)
            if entry is None:
                entry = self._entries[descriptor_name] = _MetricEntry()
            return entry

    def _is_stale(self, collected: CollectedMetric, now: float) -> bool:
        return now - collected.last_collected_at > self.ttl

    def _merge(self, existing, current) -> None:
        """Fold ``existing`` into ``current`` in place."""
        raise NotImplementedError

    def increment(self, descriptor_name: str, current) -> None:
        if current is None:
            return

        entry = self._entry(descriptor_name)
        key = fingerprint(current)
        now = self._clock()

        with entry.lock:
            existing = entry.collected.get(key)

            if existing is None or self._is_stale(existing, now):
                entry.collected[key] = CollectedMetric(current.copy(), now)
                return

            if existing.metric.report_time < current.report_time:
                merged = current.copy()
                self._merge(existing.metric, merged)
                existing.metric = merged
                existing.last_collected_at = now
                return

            if existing.metric.report_time > current.report_time:
                logger.debug(f"Ignoring old sample for {self.kind} {current.fq_name}")
                return

            logger.debug(f"Incoming {self.kind} sample for {current.fq_name} has the same timestamp, ignoring")

    def list_metrics(self, descriptor_name: str) -> List[Any]:
        """Copies of every live series of a descriptor, evicting expired ones."""
        with self._lock:
            entry = self._entries.get(descriptor_name)
        if entry is None:
            return []

        output = []
        now = self._clock()
        with entry.lock:
            for key, collected in list(entry.collected.items()):
                if self._is_stale(collected, now):
                    logger.debug(f"Deleting {self.kind} entry {collected.metric.fq_name} outside of TTL")
                    del entry.collected[key]
                    continue
                output.append(collected.metric.copy())
        return output
