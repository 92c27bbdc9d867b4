import threading
from typing import Dict, Iterable, List, Optional

from ..models import ImageRecord, RatioCategory


class IndexMirror:
    """
    In-memory copy of the persistent index, keyed by path.

    Written only by the indexing pipeline; queries read snapshots.
    """

    def __init__(self, records: Iterable[ImageRecord] = ()):
        self._lock = threading.Lock()
        self._records: Dict[str, ImageRecord] = {r.path: r for r in records}

    def get(self, path: str) -> Optional[ImageRecord]:
        with self._lock:
            return self._records.get(path)

    def put(self, record: ImageRecord):
        with self._lock:
            self._records[record.path] = record

    def remove(self, path: str) -> bool:
        with self._lock:
            return self._records.pop(path, None) is not None

    def replace_all(self, records: Iterable[ImageRecord]):
        fresh = {r.path: r for r in records}
        with self._lock:
            self._records = fresh

    def clear(self):
        with self._lock:
            self._records = {}

    def snapshot(self) -> List[ImageRecord]:
        with self._lock:
            return list(self._records.values())

    def category_counts(self) -> Dict[RatioCategory, int]:
        counts: Dict[RatioCategory, int] = {}
        for rec in self.snapshot():
            counts[rec.category] = counts.get(rec.category, 0) + 1
        return counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, path) -> bool:
        with self._lock:
            return path in self._records
