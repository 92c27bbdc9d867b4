import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Dict, List, Optional

from ..models import ClassificationSource, ImageRecord, RatioCategory

_COLUMNS = """
    file_path, width, height, aspect_ratio, category, source, format, file_size, file_mtime_ns
"""

class DBOperations:
    """
    Persistent index of classified images.

    Each public method is a single transaction taken under the shared lock,
    so concurrent readers never observe a half-written row.
    """
    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.Lock] = None):
        self.conn = conn
        self.lock = lock or threading.Lock()

    @contextmanager
    def _transaction(self):
        with self.lock, self.conn:
            yield self.conn.cursor()

    def upsert_image(self, rec: ImageRecord):
        """Inserts or replaces the row for rec.path."""
        now_iso = datetime.now(UTC).isoformat()
        with self._transaction() as cur:
            cur.execute("""
                INSERT OR REPLACE INTO image_cache (
                    file_path, file_name, width, height, aspect_ratio, category,
                    source, format, file_size, file_mtime_ns, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                rec.path, rec.file_name, rec.width, rec.height, rec.aspect_ratio,
                rec.category.value, rec.source.value, rec.format,
                rec.file_size, rec.mtime_ns, now_iso
            ))

    def delete_image(self, path: str) -> bool:
        """Removes the row for path. Returns False if there was none."""
        with self._transaction() as cur:
            cur.execute("DELETE FROM image_cache WHERE file_path = ?", (path,))
            return cur.rowcount > 0

    def get_image(self, path: str) -> Optional[ImageRecord]:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM image_cache WHERE file_path = ?", (path,))
            row = cur.fetchone()
        return self._to_record(row) if row else None

    def scan_by_category(self, category: RatioCategory) -> List[ImageRecord]:
        """Returns every record in a category, narrowest ratio first."""
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM image_cache WHERE category = ? ORDER BY aspect_ratio, file_path",
                (RatioCategory(category).value,),
            )
            rows = cur.fetchall()
        return [self._to_record(r) for r in rows]

    def scan_all(self) -> List[ImageRecord]:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM image_cache ORDER BY file_path")
            rows = cur.fetchall()
        return [self._to_record(r) for r in rows]

    def category_counts(self) -> Dict[RatioCategory, int]:
        """Returns {category: count} for categories with at least one image."""
        with self._transaction() as cur:
            cur.execute("SELECT category, COUNT(*) FROM image_cache GROUP BY category")
            rows = cur.fetchall()
        return {RatioCategory(cat): count for cat, count in rows}

    def clear(self) -> int:
        with self._transaction() as cur:
            cur.execute("DELETE FROM image_cache")
            return cur.rowcount

    @staticmethod
    def _to_record(row) -> ImageRecord:
        path, width, height, ratio, category, source, fmt, size, mtime_ns = row
        return ImageRecord(
            path=path,
            category=RatioCategory(category),
            aspect_ratio=ratio,
            source=ClassificationSource(source),
            file_size=size,
            mtime_ns=mtime_ns,
            width=width,
            height=height,
            format=fmt,
        )
