import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from . import config
from .classification.classifier import ImageClassifier
from .classification.rules import classify_requested_resolution
from .core import CacheEngine
from .database.db import DBManager
from .database.ops import DBOperations
from .exceptions import WallpaperCacheError
from .indexing.mirror import IndexMirror
from .indexing.pipeline import IndexingPipeline
from .metadata.extract import MetadataExtractor
from .models import RatioCategory

def setup_logging(verbose: bool, log_file: Optional[Path] = None):
    """Sets up logging to the console and optionally a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )

    # Silence chatty libraries
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Wallpaper ratio cache: index images by aspect ratio")

    p.add_argument("--db", type=Path, default=config.DB_PATH, help="SQLite index path (default: %(default)s)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    sub = p.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Index a directory and keep the index current until interrupted")
    watch.add_argument("root", type=Path, nargs="?", default=config.WALLPAPER_DIR)

    scan = sub.add_parser("scan", help="Index a directory once and exit")
    scan.add_argument("root", type=Path, nargs="?", default=config.WALLPAPER_DIR)

    reanalyze = sub.add_parser("reanalyze", help="Discard the index and rebuild it")
    reanalyze.add_argument("root", type=Path, nargs="?", default=config.WALLPAPER_DIR)

    query = sub.add_parser("query", help="List indexed images for a ratio category")
    query.add_argument("category", choices=[c.value for c in RatioCategory])
    query.add_argument("--random", action="store_true", help="Print one random match instead of all")

    sub.add_parser("stats", help="Print image counts per category")

    classify = sub.add_parser("classify", help="Show which category a screen resolution is served")
    classify.add_argument("width", type=int)
    classify.add_argument("height", type=int)

    return p.parse_args(argv)

def cmd_watch(args) -> int:
    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    with CacheEngine(args.root.resolve(), DBManager(args.db)) as engine:
        try:
            while not stop.wait(1.0):
                pass
        except KeyboardInterrupt:
            logging.info("Interrupted, shutting down...")
        logging.info(f"Final statistics: {engine.get_statistics()['per_category']}")
    return 0

def cmd_scan(args) -> int:
    root = args.root.resolve()
    if not root.is_dir():
        logging.error(f"Wallpaper directory does not exist: {root}")
        return 1

    with DBManager(args.db) as conn:
        store = DBOperations(conn)
        mirror = IndexMirror(store.scan_all())
        pipeline = IndexingPipeline(store, mirror, ImageClassifier(MetadataExtractor()))
        pipeline.index_tree(root, progress=True)
        if pipeline.flush():
            logging.error(f"{pipeline.unpersisted} index changes could not be persisted")
            return 1
    return 0

def cmd_reanalyze(args) -> int:
    with CacheEngine(args.root.resolve(), DBManager(args.db)) as engine:
        queued = engine.force_reanalyze()
        print(f"Re-analyzed {queued} images")
    return 0

def _read_only_engine(args) -> CacheEngine:
    engine = CacheEngine(config.WALLPAPER_DIR, DBManager(args.db))
    engine.start(watch=False)
    return engine

def cmd_query(args) -> int:
    engine = _read_only_engine(args)
    try:
        if args.random:
            path = engine.pick_random(args.category)
            if path is None:
                logging.error(f"No wallpapers indexed for {args.category}")
                return 1
            print(path)
            return 0

        served, paths = engine.get_images_for_request(args.category)
        if served.value != args.category:
            logging.warning(f"No {args.category} wallpapers, showing {served.value}")
        for path in paths:
            print(path)
        return 0 if paths else 1
    finally:
        engine.shutdown()

def cmd_stats(args) -> int:
    engine = _read_only_engine(args)
    try:
        print(json.dumps(engine.get_statistics(), indent=2))
    finally:
        engine.shutdown()
    return 0

def cmd_classify(args) -> int:
    print(classify_requested_resolution(args.width, args.height).value)
    return 0

COMMANDS = {
    "watch": cmd_watch,
    "scan": cmd_scan,
    "reanalyze": cmd_reanalyze,
    "query": cmd_query,
    "stats": cmd_stats,
    "classify": cmd_classify,
}

def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    try:
        sys.exit(COMMANDS[args.command](args))
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except WallpaperCacheError as e:
        logging.error(str(e))
        sys.exit(1)

if __name__ == "__main__":
    main()
