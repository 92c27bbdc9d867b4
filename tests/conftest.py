import pytest
import sqlite3
from pathlib import Path

from PIL import Image

from wallpaper_cache.core import CacheEngine
from wallpaper_cache.database.db import DBManager
from wallpaper_cache.database.ops import DBOperations
from wallpaper_cache.database.schema import init_schema
from wallpaper_cache.metadata.extract import MetadataExtractor
from wallpaper_cache.models import EventKind, FileChangeEvent
from wallpaper_cache.scanning.filesystem import iter_image_files


class CountingExtractor(MetadataExtractor):
    """Real extractor that records which paths it was asked to decode."""

    def __init__(self):
        self.calls = []

    def extract(self, path):
        self.calls.append(Path(path))
        return super().extract(path)


class FakeWatcher:
    """Replays existing files like the real watcher, then only emits on demand."""

    def __init__(self, root: Path):
        self.root = root
        self.callback = None
        self.stopped = False

    def start(self, callback) -> int:
        self.callback = callback
        replayed = 0
        for path in iter_image_files(self.root):
            callback(FileChangeEvent(str(path), EventKind.ADD))
            replayed += 1
        return replayed

    def stop(self):
        self.stopped = True

    def emit(self, path, kind: EventKind):
        self.callback(FileChangeEvent(str(path), kind))


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:", check_same_thread=False)
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def db_ops(conn):
    """Returns a DBOperations instance attached to the in-memory DB."""
    return DBOperations(conn)

@pytest.fixture
def make_image():
    """Writes a real image of the given size and returns its path."""
    def _make(path: Path, width: int, height: int, **save_kwargs) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", (width, height), color=(40, 90, 160)).save(path, **save_kwargs)
        return path
    return _make

@pytest.fixture
def wallpaper_dir(tmp_path):
    root = tmp_path / "wallpaper"
    root.mkdir()
    return root

@pytest.fixture
def extractor():
    return CountingExtractor()

@pytest.fixture
def engine_factory(tmp_path, extractor):
    """Builds engines on a file database with a FakeWatcher; shuts them all down afterwards."""
    engines = []

    def _make(root: Path, db_path: Path = None) -> CacheEngine:
        engine = CacheEngine(
            root,
            DBManager(db_path or tmp_path / "index.db"),
            extractor=extractor,
            watcher=FakeWatcher(root),
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.shutdown()
