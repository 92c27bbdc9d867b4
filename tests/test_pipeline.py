import os
import sqlite3
import pytest
from pathlib import Path

from wallpaper_cache.classification.classifier import ImageClassifier
from wallpaper_cache.database.ops import DBOperations
from wallpaper_cache.indexing.mirror import IndexMirror
from wallpaper_cache.indexing.pipeline import IndexingPipeline
from wallpaper_cache.metadata.extract import MetadataExtractor
from wallpaper_cache.models import ClassificationSource, EventKind, FileChangeEvent, RatioCategory


class FlakyStore(DBOperations):
    """Store whose writes can be switched off to simulate an unavailable database."""

    def __init__(self, conn):
        super().__init__(conn)
        self.failing = False

    def upsert_image(self, rec):
        if self.failing:
            raise sqlite3.OperationalError("database is locked")
        super().upsert_image(rec)

    def delete_image(self, path):
        if self.failing:
            raise sqlite3.OperationalError("database is locked")
        return super().delete_image(path)


class BrokenExtractor(MetadataExtractor):
    def extract(self, path):
        if Path(path).name == "boom.png":
            raise RuntimeError("decoder crashed")
        return super().extract(path)


@pytest.fixture
def pipeline(db_ops, extractor):
    p = IndexingPipeline(db_ops, IndexMirror(), ImageClassifier(extractor))
    yield p
    p.stop(timeout=5)

def _bump_mtime(path: Path):
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

def test_change_is_classified_once_until_file_changes(pipeline, extractor, make_image, tmp_path):
    path = make_image(tmp_path / "b.jpg", 1920, 1080)

    assert pipeline.process_change(path) is True
    assert pipeline.process_change(path) is False
    assert len(extractor.calls) == 1
    assert pipeline.classified_count == 1

    _bump_mtime(path)
    assert pipeline.process_change(path) is True
    assert len(extractor.calls) == 2
    assert pipeline.classified_count == 2

def test_change_writes_store_and_mirror(pipeline, db_ops, make_image, tmp_path):
    path = make_image(tmp_path / "b.jpg", 1920, 1080)
    pipeline.process_change(path)

    stored = db_ops.get_image(str(path))
    assert stored == pipeline.mirror.get(str(path))
    assert stored.category == RatioCategory.WIDESCREEN
    assert stored.source == ClassificationSource.PIXEL_METADATA
    assert stored.dimensions == (1920, 1080)
    assert stored.file_size == path.stat().st_size
    assert stored.mtime_ns == path.stat().st_mtime_ns

def test_change_for_vanished_file_deletes_record(pipeline, db_ops, make_image, tmp_path):
    path = make_image(tmp_path / "b.jpg", 1920, 1080)
    pipeline.process_change(path)
    path.unlink()

    assert pipeline.process_change(path) is False
    assert db_ops.get_image(str(path)) is None
    assert str(path) not in pipeline.mirror

def test_delete_of_unknown_path_is_harmless(pipeline, tmp_path):
    assert pipeline.process_delete(tmp_path / "never.jpg") is False

def test_delete_tree_drops_only_paths_under_directory(pipeline, db_ops, make_image, tmp_path):
    keep = make_image(tmp_path / "keep.png", 1920, 1080)
    sibling = make_image(tmp_path / "sub2" / "c.png", 1920, 1080)
    inside = [make_image(tmp_path / "sub" / "a.png", 1920, 1080),
              make_image(tmp_path / "sub" / "deep" / "b.png", 1080, 1920)]
    for path in [keep, sibling, *inside]:
        pipeline.process_change(path)

    assert pipeline.process_delete_tree(tmp_path / "sub") == 2
    assert sorted(r.path for r in db_ops.scan_all()) == sorted([str(keep), str(sibling)])
    assert len(pipeline.mirror) == 2

def test_delete_tree_event_is_handled_by_worker(pipeline, db_ops, make_image, tmp_path):
    path = make_image(tmp_path / "sub" / "a.png", 1920, 1080)
    pipeline.process_change(path)

    pipeline.start()
    pipeline.submit(FileChangeEvent(str(tmp_path / "sub"), EventKind.DELETE_TREE))
    assert pipeline.wait_idle(timeout=10)
    assert db_ops.scan_all() == []
    assert len(pipeline.mirror) == 0

def test_submit_coalesces_duplicate_pending_events(pipeline):
    add = FileChangeEvent("/walls/a.jpg", EventKind.ADD)
    change = FileChangeEvent("/walls/a.jpg", EventKind.CHANGE)
    delete = FileChangeEvent("/walls/a.jpg", EventKind.DELETE)

    assert pipeline.submit(add) is True
    assert pipeline.submit(change) is False
    assert pipeline.submit(add) is False
    assert pipeline.submit(delete) is True
    assert pipeline.submit(add) is True
    assert pipeline.submit(FileChangeEvent("/walls/b.jpg", EventKind.ADD)) is True
    assert pipeline.pending == 4

def test_delete_after_add_lands_last(pipeline, db_ops, make_image, tmp_path):
    path = make_image(tmp_path / "b.jpg", 1920, 1080)
    pipeline.submit(FileChangeEvent(str(path), EventKind.ADD))
    pipeline.submit(FileChangeEvent(str(path), EventKind.DELETE))

    # The delete event wins even though the file is still on disk
    pipeline.start()
    assert pipeline.wait_idle(timeout=10)
    assert db_ops.get_image(str(path)) is None
    assert len(pipeline.mirror) == 0

def test_worker_drains_queue(pipeline, db_ops, make_image, tmp_path):
    paths = [make_image(tmp_path / f"img{i}.png", 100 + i, 100) for i in range(5)]
    pipeline.start()
    for path in paths:
        pipeline.submit(FileChangeEvent(str(path), EventKind.ADD))

    assert pipeline.wait_idle(timeout=10)
    assert pipeline.pending == 0
    assert sorted(r.path for r in db_ops.scan_all()) == sorted(str(p) for p in paths)

def test_bad_file_does_not_stop_queue(db_ops, make_image, tmp_path):
    pipeline = IndexingPipeline(db_ops, IndexMirror(), ImageClassifier(BrokenExtractor()))
    boom = make_image(tmp_path / "boom.png", 100, 100)
    fine = make_image(tmp_path / "fine.png", 300, 100)

    pipeline.start()
    pipeline.submit(FileChangeEvent(str(boom), EventKind.ADD))
    pipeline.submit(FileChangeEvent(str(fine), EventKind.ADD))
    try:
        assert pipeline.wait_idle(timeout=10)
    finally:
        pipeline.stop(timeout=5)

    assert db_ops.get_image(str(boom)) is None
    assert db_ops.get_image(str(fine)).category == RatioCategory.ULTRAWIDE

def test_failed_store_write_keeps_mirror_and_retries(conn, extractor, make_image, tmp_path):
    store = FlakyStore(conn)
    pipeline = IndexingPipeline(store, IndexMirror(), ImageClassifier(extractor))
    path = make_image(tmp_path / "b.jpg", 1920, 1080)

    store.failing = True
    assert pipeline.process_change(path) is True
    assert pipeline.mirror.get(str(path)).category == RatioCategory.WIDESCREEN
    assert pipeline.unpersisted == 1
    assert pipeline.flush() == 1

    store.failing = False
    assert pipeline.flush() == 0
    assert store.get_image(str(path)) == pipeline.mirror.get(str(path))

def test_failed_delete_is_retried(conn, extractor, make_image, tmp_path):
    store = FlakyStore(conn)
    pipeline = IndexingPipeline(store, IndexMirror(), ImageClassifier(extractor))
    path = make_image(tmp_path / "b.jpg", 1920, 1080)
    pipeline.process_change(path)

    store.failing = True
    assert pipeline.process_delete(path) is True
    assert str(path) not in pipeline.mirror
    assert store.get_image(str(path)) is not None

    store.failing = False
    assert pipeline.flush() == 0
    assert store.get_image(str(path)) is None

def test_cancel_pending_drops_queued_events(pipeline):
    pipeline.submit(FileChangeEvent("/walls/a.jpg", EventKind.ADD))
    pipeline.submit(FileChangeEvent("/walls/b.jpg", EventKind.ADD))

    assert pipeline.cancel_pending() == 2
    assert pipeline.pending == 0
    # Coalescing state is cleared too
    assert pipeline.submit(FileChangeEvent("/walls/a.jpg", EventKind.ADD)) is True

def test_stop_drains_outstanding_events(db_ops, extractor, make_image, tmp_path):
    pipeline = IndexingPipeline(db_ops, IndexMirror(), ImageClassifier(extractor))
    path = make_image(tmp_path / "b.jpg", 1920, 1080)
    pipeline.submit(FileChangeEvent(str(path), EventKind.ADD))

    pipeline.start()
    pipeline.stop(timeout=10)

    assert db_ops.get_image(str(path)) is not None

def test_index_tree_and_reset(pipeline, db_ops, make_image, tmp_path):
    root = tmp_path / "walls"
    make_image(root / "a.png", 200, 100)
    make_image(root / "sub" / "b.png", 100, 200)

    assert pipeline.index_tree(root) == 2
    assert pipeline.index_tree(root) == 0
    assert len(db_ops.scan_all()) == 2

    pipeline.reset()
    assert db_ops.scan_all() == []
    assert len(pipeline.mirror) == 0
