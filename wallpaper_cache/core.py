import os
import random
import sqlite3
import logging
import threading
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .classification.classifier import ImageClassifier
from .database.db import DBManager
from .database.ops import DBOperations
from .exceptions import EngineStateError
from .indexing.mirror import IndexMirror
from .indexing.pipeline import IndexingPipeline
from .metadata.extract import MetadataExtractor
from .models import EngineState, EventKind, FileChangeEvent, RatioCategory
from .query.engine import QueryEngine
from .scanning.filesystem import iter_image_files
from .scanning.watcher import ChangeWatcher


class CacheEngine:
    """
    Keeps a ratio-indexed cache of a wallpaper directory and answers
    "images matching ratio R" queries.

    Lifecycle: UNINITIALIZED -> LOADING -> WATCHING <-> REANALYZING -> STOPPED.
    The engine stays in LOADING, with whatever the database held, if the
    wallpaper directory does not exist.
    """

    def __init__(self,
                 root: Path,
                 db_manager: DBManager,
                 extractor: Optional[MetadataExtractor] = None,
                 watcher: Optional[ChangeWatcher] = None,
                 rng: Optional[random.Random] = None):
        self.root = Path(root)
        self.db_manager = db_manager
        self.extractor = extractor or MetadataExtractor()
        self.watcher = watcher or ChangeWatcher(self.root)
        self.rng = rng or random.Random()

        self.mirror = IndexMirror()
        self.store: Optional[DBOperations] = None
        self.pipeline: Optional[IndexingPipeline] = None
        self.query: Optional[QueryEngine] = None

        self._state = EngineState.UNINITIALIZED
        self._state_lock = threading.Lock()

    @property
    def state(self) -> EngineState:
        return self._state

    def _transition(self, expected: Tuple[EngineState, ...], new: EngineState, action: str):
        with self._state_lock:
            if self._state not in expected:
                raise EngineStateError(f"Cannot {action} while {self._state.value}")
            self._state = new

    # --- Lifecycle ---

    def start(self, watch: bool = True) -> EngineState:
        """
        Loads the persisted index and, if watch is set, starts watching the
        wallpaper directory. Without watching the engine serves the persisted
        index read-only and stays in LOADING.
        """
        self._transition((EngineState.UNINITIALIZED,), EngineState.LOADING, "start")

        self.store = DBOperations(self.db_manager.connect(), self.db_manager.lock)
        self.pipeline = IndexingPipeline(self.store, self.mirror, ImageClassifier(self.extractor))
        self.query = QueryEngine(self.store, self.mirror, on_stale=self._forget)

        try:
            self.mirror.replace_all(self.store.scan_all())
        except sqlite3.Error as e:
            logging.error(f"Failed to load image cache from database: {e}")
        logging.info(f"Loaded {len(self.mirror)} cached images from database")

        self.pipeline.start()

        if not watch:
            return self._state
        if not self.root.is_dir():
            logging.warning(f"Wallpaper directory does not exist: {self.root}")
            return self._state

        replayed = self.watcher.start(self.pipeline.submit)
        stale = self._sweep_missing()
        logging.info(f"Queued {replayed} existing images for indexing ({stale} stale records)")

        self._transition((EngineState.LOADING,), EngineState.WATCHING, "watch")
        return self._state

    def shutdown(self):
        """Stops watching, finishes queued work and closes the database."""
        with self._state_lock:
            if self._state == EngineState.STOPPED:
                logging.debug("Cache engine already stopped")
                return
            # Blocks force_reanalyze and a second shutdown from here on
            self._state = EngineState.STOPPED

        self.watcher.stop()
        if self.pipeline:
            self.pipeline.stop()
            remaining = self.pipeline.flush()
            if remaining:
                logging.error(f"{remaining} index changes could not be persisted")
        self.db_manager.close()
        logging.info("Cache engine stopped")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        self._require_started()
        return self.pipeline.wait_idle(timeout)

    # --- Queries ---

    def get_images_by_ratio(self, category) -> List[str]:
        self._require_started()
        return self.query.get_images_by_category(category)

    def get_images_for_request(self, category) -> Tuple[RatioCategory, List[str]]:
        """
        Returns (served_category, paths), retrying the whole query against
        widescreen when the requested category has no candidates at all.
        """
        target = RatioCategory(category)
        paths = self.get_images_by_ratio(target)
        if not paths and target != config.FALLBACK_CATEGORY:
            logging.info(f"No {target.value} wallpapers, falling back to {config.FALLBACK_CATEGORY.value}")
            return config.FALLBACK_CATEGORY, self.get_images_by_ratio(config.FALLBACK_CATEGORY)
        return target, paths

    def pick_random(self, category) -> Optional[str]:
        _, paths = self.get_images_for_request(category)
        return self.rng.choice(paths) if paths else None

    def get_statistics(self) -> Dict[str, Any]:
        self._require_started()
        try:
            counts = self.store.category_counts()
            source = 'sqlite_database'
        except sqlite3.Error as e:
            logging.warning(f"Index store unavailable, counting from memory: {e}")
            counts = self.mirror.category_counts()
            source = 'memory_cache'

        per_category = {c.value: 0 for c in RatioCategory}
        for category, count in counts.items():
            per_category[category.value] = count

        return {
            'total_images': sum(per_category.values()),
            'per_category': per_category,
            'data_source': source,
            'last_updated': datetime.now(UTC).isoformat(),
        }

    # --- Maintenance ---

    def force_reanalyze(self) -> int:
        """
        Discards the whole index and rebuilds it from a fresh directory walk.
        Blocks until the rebuild is done. Returns the number of files queued.
        """
        self._transition((EngineState.WATCHING,), EngineState.REANALYZING, "re-analyze")
        logging.info("Re-analyzing all wallpapers...")

        try:
            # Nothing queued before the clear may land after it
            self.pipeline.cancel_pending()
            self.pipeline.wait_idle()
            self.pipeline.reset()
            classified_before = self.pipeline.classified_count

            queued = 0
            for path in iter_image_files(self.root):
                self.pipeline.submit(FileChangeEvent(str(path), EventKind.ADD))
                queued += 1
            self.pipeline.wait_idle()
        finally:
            with self._state_lock:
                if self._state == EngineState.REANALYZING:
                    self._state = EngineState.WATCHING

        classified = self.pipeline.classified_count - classified_before
        logging.info(f"Re-analysis complete: {classified} classified, {len(self.mirror)} images indexed")
        return queued

    def cleanup(self) -> int:
        """Removes records whose files are gone. Returns how many were found."""
        self._require_started()
        removed = self._sweep_missing()
        self.pipeline.wait_idle()
        if removed:
            logging.info(f"Cleaned up {removed} missing images")
        return removed

    def _sweep_missing(self) -> int:
        missing = [rec.path for rec in self.mirror.snapshot() if not os.path.exists(rec.path)]
        for path in missing:
            self._forget(path)
        return len(missing)

    def _forget(self, path: str):
        self.pipeline.submit(FileChangeEvent(path, EventKind.DELETE))

    def _require_started(self):
        if self.query is None:
            raise EngineStateError("Cache engine has not been started")
