"""Buffered samples produced from Cloud Monitoring time series."""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Tuple

GAUGE = 'gauge'
COUNTER = 'counter'


@dataclass
class ConstMetric:
    """One gauge or counter sample."""
    fq_name: str
    label_keys: List[str]
    value_type: str
    value: float
    label_values: List[str]
    report_time: datetime

    def copy(self) -> 'ConstMetric':
        return replace(self, label_keys=list(self.label_keys), label_values=list(self.label_values))


@dataclass
class HistogramMetric:
    """One histogram built from a distribution value."""
    fq_name: str
    label_keys: List[str]
    count: int
    sum: float
    buckets: Dict[float, int]
    label_values: List[str]
    report_time: datetime

    def copy(self) -> 'HistogramMetric':
        return replace(
            self,
            label_keys=list(self.label_keys),
            label_values=list(self.label_values),
            buckets=dict(self.buckets),
        )


def fingerprint(metric) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
    """Identity of a series: its name plus its sorted label pairs."""
    return metric.fq_name, tuple(sorted(zip(metric.label_keys, metric.label_values)))
