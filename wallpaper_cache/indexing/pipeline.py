import os
import stat
import sqlite3
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Optional

from tqdm import tqdm

from ..classification.classifier import ImageClassifier
from ..database.ops import DBOperations
from ..models import EventKind, FileChangeEvent, ImageRecord
from ..scanning.filesystem import iter_image_files
from .mirror import IndexMirror


def _coalesce_kind(kind: EventKind) -> EventKind:
    # add and change both mean "re-check this file"
    if kind in (EventKind.DELETE, EventKind.DELETE_TREE):
        return kind
    return EventKind.CHANGE


class IndexingPipeline:
    """
    Turns file events into index records.

    Events are queued in arrival order and drained by a single worker thread,
    so no two classifications of the same path ever overlap. The store is
    written first, then the mirror; a failed store write is remembered and
    retried by flush() instead of being dropped.
    """

    def __init__(self, store: DBOperations, mirror: IndexMirror, classifier: ImageClassifier):
        self.store = store
        self.mirror = mirror
        self.classifier = classifier

        self._queue: Deque[FileChangeEvent] = deque()
        # Per path: kind of the newest pending event and how many are pending
        self._last_kind: Dict[str, EventKind] = {}
        self._pending_count: Dict[str, int] = {}
        self._cond = threading.Condition()
        self._busy = False
        self._stopping = False
        self._worker: Optional[threading.Thread] = None

        # path -> record still to be written, or None for a delete still to be applied
        self._unpersisted: Dict[str, Optional[ImageRecord]] = {}
        self.classified_count = 0

    # --- Queue ---

    def start(self):
        with self._cond:
            if self._worker and self._worker.is_alive():
                return
            self._stopping = False
            self._worker = threading.Thread(target=self._run, name="wallpaper-indexer", daemon=True)
            self._worker.start()

    def submit(self, event: FileChangeEvent) -> bool:
        """
        Queues an event. Returns False if it was coalesced into an identical
        pending event for the same path.
        """
        kind = _coalesce_kind(event.kind)
        with self._cond:
            if self._last_kind.get(event.path) == kind:
                return False
            self._queue.append(event)
            self._last_kind[event.path] = kind
            self._pending_count[event.path] = self._pending_count.get(event.path, 0) + 1
            self._cond.notify_all()
            return True

    def cancel_pending(self) -> int:
        """Drops every queued event that has not started yet."""
        with self._cond:
            dropped = len(self._queue)
            self._queue.clear()
            self._last_kind.clear()
            self._pending_count.clear()
            self._cond.notify_all()
        if dropped:
            logging.info(f"Cancelled {dropped} pending index events")
        return dropped

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the queue is empty and no event is in flight."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._queue and not self._busy, timeout)

    def stop(self, timeout: Optional[float] = None):
        """Drains the queue, then stops the worker."""
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
            worker = self._worker
        if worker:
            worker.join(timeout)
            if worker.is_alive():
                logging.warning(f"Indexer still busy after {timeout}s; {self.pending} events pending")
        self._worker = None

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._queue)

    def _take(self) -> FileChangeEvent:
        event = self._queue.popleft()
        remaining = self._pending_count[event.path] - 1
        if remaining:
            self._pending_count[event.path] = remaining
        else:
            del self._pending_count[event.path]
            del self._last_kind[event.path]
        self._busy = True
        return event

    def _run(self):
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._queue or self._stopping)
                if not self._queue:
                    return
                event = self._take()

            try:
                self.handle(event)
            except Exception:
                # One bad file must not stop the queue
                logging.exception(f"Failed to index {event.path}")

            with self._cond:
                drained = not self._queue
            if drained and self._unpersisted:
                self.flush()

            with self._cond:
                self._busy = False
                self._cond.notify_all()

    # --- Event Handling ---

    def handle(self, event: FileChangeEvent):
        if event.kind == EventKind.DELETE:
            self.process_delete(event.path)
        elif event.kind == EventKind.DELETE_TREE:
            self.process_delete_tree(event.path)
        else:
            self.process_change(event.path)

    def process_change(self, path) -> bool:
        """
        Re-indexes path if it is new or its mtime changed.
        Returns True if the file was (re)classified.
        """
        path = str(path)
        try:
            st = os.stat(path)
        except FileNotFoundError:
            self.process_delete(path)
            return False

        if not stat.S_ISREG(st.st_mode):
            return False

        existing = self.mirror.get(path)
        if existing and existing.mtime_ns == st.st_mtime_ns:
            return False

        result = self.classifier.classify(Path(path))
        record = ImageRecord.from_classification(path, result, st.st_size, st.st_mtime_ns)

        self._persist(record)
        self.mirror.put(record)
        self.classified_count += 1

        size = "x".join(map(str, record.dimensions)) if record.dimensions else "?"
        logging.debug(f"Indexed {record.file_name}: {record.category.value} "
                      f"({record.aspect_ratio}, {size}, {record.source.value})")
        return True

    def process_delete(self, path) -> bool:
        """Forgets path. Returns True if it was indexed."""
        path = str(path)
        try:
            self.store.delete_image(path)
            self._unpersisted.pop(path, None)
        except sqlite3.Error as e:
            logging.error(f"Failed to delete index record for {path}: {e}")
            self._unpersisted[path] = None

        removed = self.mirror.remove(path)
        if removed:
            logging.debug(f"Removed from index: {Path(path).name}")
        return removed

    def process_delete_tree(self, directory) -> int:
        """Forgets every indexed path under directory. Returns how many were dropped."""
        prefix = str(directory).rstrip(os.sep) + os.sep
        removed = 0
        for rec in self.mirror.snapshot():
            if rec.path.startswith(prefix) and self.process_delete(rec.path):
                removed += 1
        if removed:
            logging.info(f"Dropped {removed} images under removed directory {directory}")
        return removed

    def _persist(self, record: ImageRecord):
        try:
            self.store.upsert_image(record)
            self._unpersisted.pop(record.path, None)
        except sqlite3.Error as e:
            logging.error(f"Failed to persist index record for {record.path}: {e}")
            self._unpersisted[record.path] = record

    def flush(self) -> int:
        """
        Retries store writes that failed earlier.
        Returns how many are still unpersisted.
        """
        for path, record in list(self._unpersisted.items()):
            try:
                if record is None:
                    self.store.delete_image(path)
                else:
                    self.store.upsert_image(record)
            except sqlite3.Error as e:
                logging.warning(f"Index write for {path} still failing: {e}")
                continue
            self._unpersisted.pop(path, None)
        return len(self._unpersisted)

    @property
    def unpersisted(self) -> int:
        return len(self._unpersisted)

    # --- Bulk Operations ---

    def reset(self):
        """
        Empties the store and the mirror.

        Runs on the caller thread, not the worker, so call it only once the
        queue is idle (cancel_pending then wait_idle). A live event that slips
        in meanwhile may be cleared with the rest; callers re-walk the tree
        afterwards, which re-queues every file still on disk.
        """
        try:
            removed = self.store.clear()
            logging.info(f"Cleared {removed} persisted index records")
        except sqlite3.Error as e:
            logging.error(f"Failed to clear persisted index: {e}")
        self.mirror.clear()
        self._unpersisted.clear()

    def index_tree(self, root: Path, progress: bool = False) -> int:
        """
        Synchronously indexes every image under root, bypassing the queue.
        Returns the number of files (re)classified.
        """
        files = list(iter_image_files(root))
        classified = 0
        for path in tqdm(files, desc="Indexing", unit="img", disable=not progress):
            try:
                if self.process_change(path):
                    classified += 1
            except Exception as e:
                logging.error(f"Failed to index {path}: {e}")
        logging.info(f"Indexed {root}: {classified} classified, {len(files) - classified} unchanged")
        return classified
