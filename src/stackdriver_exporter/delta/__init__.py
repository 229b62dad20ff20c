from .counter_store import InMemoryCounterStore
from .histogram_store import InMemoryHistogramStore

__all__ = ['InMemoryCounterStore', 'InMemoryHistogramStore']
