"""
Database connection management.
"""
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional, Union

from ..exceptions import IndexStoreError
from .schema import init_schema

class DBManager:
    def __init__(self, db_path: Union[Path, str]):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        # One connection is shared by the indexing worker and query threads,
        # so every statement batch runs under this lock
        self._lock = threading.Lock()

    def connect(self) -> sqlite3.Connection:
        """
        Connects to the SQLite database and configures performance pragmas.
        """
        if self._conn:
            return self._conn

        logging.info(f"Connecting to database: {self.db_path}")
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)

            # Performance Tuning (Safe for single-writer, multi-reader)
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA temp_store=MEMORY;")

            # Ensure schema exists
            init_schema(self._conn)
        except sqlite3.Error as e:
            self.close()
            raise IndexStoreError(f"Cannot open index database {self.db_path}: {e}") from e

        return self._conn

    def close(self):
        if self._conn:
            with self._lock:
                self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def lock(self) -> threading.Lock:
        """Returns the lock serializing access to the shared connection."""
        return self._lock
