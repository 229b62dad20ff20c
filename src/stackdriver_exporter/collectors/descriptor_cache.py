"""Time-bounded cache of metric descriptors per project and prefix."""

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple


def is_google_metric(name: str) -> bool:
    return '.googleapis.com' in name


class DescriptorCache:
    """
    Remembers ``metricDescriptors.list`` results for ``ttl`` seconds.

    A zero TTL disables caching. With ``only_google`` set, only prefixes of
    first-party ``*.googleapis.com`` metrics are cached, since custom metric
    descriptors come and go.
    """

    def __init__(self, ttl: float, only_google: bool = True, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.only_google = only_google
        self._clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[float, List[Dict[str, Any]]]] = {}
        self._lock = threading.Lock()

    def _cacheable(self, prefix: str) -> bool:
        if self.ttl <= 0:
            return False
        return not self.only_google or is_google_metric(prefix)

    def lookup(self, project_id: str, prefix: str) -> Optional[List[Dict[str, Any]]]:
        if not self._cacheable(prefix):
            return None

        with self._lock:
            cached = self._entries.get((project_id, prefix))
            if cached is None:
                return None
            expires_at, descriptors = cached
            if self._clock() >= expires_at:
                del self._entries[(project_id, prefix)]
                return None
            return list(descriptors)

    def store(self, project_id: str, prefix: str, descriptors: List[Dict[str, Any]]) -> None:
        if not self._cacheable(prefix):
            return

        with self._lock:
            self._entries[(project_id, prefix)] = (self._clock() + self.ttl, list(descriptors))
