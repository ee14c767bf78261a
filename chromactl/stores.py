import threading
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .classifier import is_blocked, is_retryable
from .models import POLICY, TRANSIENT, FailedItem, Result, Settings


class FailedStore:
    """Failed jobs, newest first, until retried or dismissed."""

    def __init__(self, items: Optional[Iterable[FailedItem]] = None):
        self._lock = threading.Lock()
        self._items: List[FailedItem] = list(items or [])

    def add(self, item: FailedItem):
        with self._lock:
            self._items.insert(0, item)

    def get(self, item_id: str) -> Optional[FailedItem]:
        with self._lock:
            for item in self._items:
                if item.id == item_id:
                    return item
            return None

    def take(self, item_id: str) -> Optional[FailedItem]:
        """Remove and return an item."""
        with self._lock:
            for i, item in enumerate(self._items):
                if item.id == item_id:
                    return self._items.pop(i)
            return None

    def delete(self, item_id: str) -> bool:
        return self.take(item_id) is not None

    def take_retryable(self, settings: Settings, category: Optional[str] = None) -> List[FailedItem]:
        """Remove and return every item still under its retry ceiling, oldest first."""
        with self._lock:
            picked = [f for f in self._items if is_retryable(f, settings, category)]
            ids = {f.id for f in picked}
            self._items = [f for f in self._items if f.id not in ids]
        picked.reverse()
        return picked

    def blocked(self, settings: Settings) -> List[FailedItem]:
        with self._lock:
            return [f for f in self._items if is_blocked(f, settings)]

    def by_category(self, settings: Settings) -> Dict[str, List[FailedItem]]:
        """Split into retryable transient, retryable policy, and blocked items."""
        out = {TRANSIENT: [], POLICY: [], "blocked": []}
        with self._lock:
            for f in self._items:
                key = "blocked" if is_blocked(f, settings) else f.category
                out[key].append(f)
        return out

    def remove_source(self, source_id: str) -> int:
        with self._lock:
            before = len(self._items)
            self._items = [f for f in self._items if f.source_id != source_id]
            return before - len(self._items)

    def for_source(self, source_id: str) -> List[FailedItem]:
        with self._lock:
            return [f for f in self._items if f.source_id == source_id]

    def signatures(self) -> Set[str]:
        with self._lock:
            return {f.job.signature for f in self._items}

    def __iter__(self) -> Iterator[FailedItem]:
        with self._lock:
            return iter(list(self._items))

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class ResultStore:
    """Append-only from the scheduler; the consumer may delete."""

    def __init__(self, results: Optional[Iterable[Result]] = None):
        self._lock = threading.Lock()
        self._results: List[Result] = list(results or [])

    def append(self, result: Result):
        with self._lock:
            self._results.insert(0, result)

    def delete(self, result_id: str) -> bool:
        with self._lock:
            before = len(self._results)
            self._results = [r for r in self._results if r.id != result_id]
            return len(self._results) != before

    def clear(self) -> int:
        with self._lock:
            n = len(self._results)
            self._results = []
            return n

    def for_source(self, source_id: str) -> List[Result]:
        with self._lock:
            return [r for r in self._results if r.source_id == source_id]

    def signatures(self) -> Set[str]:
        with self._lock:
            return {r.signature for r in self._results}

    def __iter__(self) -> Iterator[Result]:
        with self._lock:
            return iter(list(self._results))

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)
