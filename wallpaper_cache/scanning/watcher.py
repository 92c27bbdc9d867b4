import logging
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..models import EventKind, FileChangeEvent
from .filesystem import is_supported_image, iter_image_files

EventCallback = Callable[[FileChangeEvent], None]


class ImageEventHandler(FileSystemEventHandler):
    """Translates watchdog events into FileChangeEvents for supported images."""

    def __init__(self, root: Path, callback: EventCallback):
        super().__init__()
        self.root = root
        self.callback = callback

    def _emit(self, path, kind: EventKind):
        path = str(path)
        if is_supported_image(path, self.root):
            self.callback(FileChangeEvent(path, kind))

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self._emit(event.src_path, EventKind.ADD)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self._emit(event.src_path, EventKind.CHANGE)

    def _emit_tree_removed(self, path):
        # No extension filter, a directory name says nothing about its contents
        path = str(path)
        try:
            rel = Path(path).relative_to(self.root)
        except ValueError:
            return
        if any(part.startswith('.') for part in rel.parts):
            return
        self.callback(FileChangeEvent(path, EventKind.DELETE_TREE))

    def on_deleted(self, event: FileSystemEvent):
        if event.is_directory:
            self._emit_tree_removed(event.src_path)
        else:
            self._emit(event.src_path, EventKind.DELETE)

    def on_moved(self, event: FileSystemEvent):
        if event.is_directory:
            # Children of a moved directory are not reported individually
            self._emit_tree_removed(event.src_path)
            for path in iter_image_files(Path(event.dest_path)):
                self._emit(path, EventKind.ADD)
            return
        self._emit(event.src_path, EventKind.DELETE)
        self._emit(event.dest_path, EventKind.ADD)


class ChangeWatcher:
    """
    Watches a directory tree and reports image add/change/delete events.

    On start every existing image is replayed as an ADD event, so a consumer
    indexes the tree once and incrementally afterwards.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._observer: Optional[Observer] = None

    def start(self, callback: EventCallback) -> int:
        """Starts watching and returns the number of replayed files."""
        if self._observer:
            raise RuntimeError("Watcher already started")

        observer = Observer()
        observer.schedule(ImageEventHandler(self.root, callback), str(self.root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logging.info(f"Watching wallpaper directory: {self.root}")

        # Subscribe before replaying so nothing created in between is missed
        replayed = 0
        for path in iter_image_files(self.root):
            callback(FileChangeEvent(str(path), EventKind.ADD))
            replayed += 1
        return replayed

    def stop(self, timeout: float = 5.0):
        if not self._observer:
            return
        self._observer.stop()
        self._observer.join(timeout)
        self._observer = None
        logging.info(f"Stopped watching {self.root}")
