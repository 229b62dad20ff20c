"""Self-monitoring of the monitoring collectors."""

import threading
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Tuple

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily


@dataclass
class ProjectScrapeStats:
    api_calls: int = 0
    scrapes: int = 0
    scrape_errors: int = 0
    last_scrape_error: int = 0
    last_scrape_timestamp: float = 0.0
    last_scrape_duration: float = 0.0


class ScrapeStats:
    """Process-wide per-project counters, updated by every scrape."""

    def __init__(self):
        self._projects: Dict[str, ProjectScrapeStats] = {}
        self._lock = threading.Lock()

    def _project(self, project_id: str) -> ProjectScrapeStats:
        stats = self._projects.get(project_id)
        if stats is None:
            stats = self._projects[project_id] = ProjectScrapeStats()
        return stats

    def api_call(self, project_id: str) -> None:
        with self._lock:
            self._project(project_id).api_calls += 1

    def record_scrape(self, project_id: str, timestamp: float, duration: float, error: bool) -> None:
        with self._lock:
            stats = self._project(project_id)
            stats.scrapes += 1
            if error:
                stats.scrape_errors += 1
            stats.last_scrape_error = 1 if error else 0
            stats.last_scrape_timestamp = timestamp
            stats.last_scrape_duration = duration

    def snapshot(self, project_ids: Iterable[str]) -> List[Tuple[str, ProjectScrapeStats]]:
        with self._lock:
            return [(p, replace(self._project(p))) for p in project_ids]


class ScrapeStatsCollector:
    """Exposes ScrapeStats for the projects of one scrape."""

    def __init__(self, stats: ScrapeStats, project_ids: Iterable[str]):
        self.stats = stats
        self.project_ids = list(project_ids)

    def collect(self):
        api_calls = CounterMetricFamily(
            'stackdriver_monitoring_api_calls',
            'Total number of Google Stackdriver Monitoring API calls made.',
            labels=['project_id'])
        scrapes = CounterMetricFamily(
            'stackdriver_monitoring_scrapes',
            'Total number of Google Stackdriver Monitoring metrics scrapes.',
            labels=['project_id'])
        scrape_errors = CounterMetricFamily(
            'stackdriver_monitoring_scrape_errors',
            'Total number of Google Stackdriver Monitoring metrics scrape errors.',
            labels=['project_id'])
        last_error = GaugeMetricFamily(
            'stackdriver_monitoring_last_scrape_error',
            'Whether the last metrics scrape from Google Stackdriver Monitoring resulted in an error (1 for error, 0 for success).',
            labels=['project_id'])
        last_timestamp = GaugeMetricFamily(
            'stackdriver_monitoring_last_scrape_timestamp',
            'Number of seconds since 1970 since last metrics scrape from Google Stackdriver Monitoring.',
            labels=['project_id'])
        last_duration = GaugeMetricFamily(
            'stackdriver_monitoring_last_scrape_duration_seconds',
            'Duration of the last metrics scrape from Google Stackdriver Monitoring.',
            labels=['project_id'])

        for project_id, stats in self.stats.snapshot(self.project_ids):
            api_calls.add_metric([project_id], stats.api_calls)
            scrapes.add_metric([project_id], stats.scrapes)
            scrape_errors.add_metric([project_id], stats.scrape_errors)
            last_error.add_metric([project_id], stats.last_scrape_error)
            last_timestamp.add_metric([project_id], stats.last_scrape_timestamp)
            last_duration.add_metric([project_id], stats.last_scrape_duration)

        return [api_calls, scrapes, scrape_errors, last_error, last_timestamp, last_duration]
