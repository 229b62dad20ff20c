"""Metric type prefix and extra filter handling."""

from dataclasses import dataclass
from typing import Iterable, List, Tuple


@dataclass(frozen=True)
class MetricFilter:
    """Server-side filter applied to metrics whose type starts with a prefix."""
    targeted_metric_prefix: str
    filter_query: str


def normalize_metric_type_prefixes(prefixes: Iterable[str]) -> List[str]:
    """
    Sort and dedupe prefixes, dropping any prefix covered by a shorter one.

    Querying both ``a/`` and ``a/b`` would register the same series twice
    ("collected before with the same name and label values"), so only the
    outermost prefix of each chain is kept.
    """
    normalized: List[str] = []
    for prefix in sorted(set(prefixes)):
        if normalized and prefix.startswith(normalized[-1]):
            continue
        normalized.append(prefix)
    return normalized


def split_extra_filter(extra_filter: str, separator: str) -> Tuple[str, str]:
    """Split ``prefix<separator>query`` at the first separator."""
    prefix, _, query = extra_filter.partition(separator)
    return prefix, query


def parse_metric_extra_filters(filters: Iterable[str], separator: str = ':') -> List[MetricFilter]:
    """Parse operator supplied ``prefix:query`` strings, skipping empty prefixes."""
    extra_filters = []
    for extra_filter in filters:
        targeted_metric_prefix, filter_query = split_extra_filter(extra_filter, separator)
        if targeted_metric_prefix:
            extra_filters.append(MetricFilter(
                targeted_metric_prefix=targeted_metric_prefix.lower(),
                filter_query=filter_query,
            ))
    return extra_filters


def filter_metric_type_prefixes(prefixes: Iterable[str], selection: Iterable[str]) -> List[str]:
    """
    Narrow the configured prefixes to those named in a scrape's selection.

    An empty selection keeps every configured prefix. Selected prefixes that
    are not configured are ignored.
    """
    selected = set(selection)
    if not selected:
        return list(prefixes)
    return [prefix for prefix in prefixes if prefix in selected]
