"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the index schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Image Index
        # One row per live image file, keyed by absolute path
        conn.execute("""
        CREATE TABLE IF NOT EXISTS image_cache (
            file_path       TEXT PRIMARY KEY,
            file_name       TEXT NOT NULL,
            width           INTEGER,
            height          INTEGER,
            aspect_ratio    REAL NOT NULL,
            category        TEXT NOT NULL,
            source          TEXT NOT NULL,
            format          TEXT,
            file_size       INTEGER NOT NULL,
            file_mtime_ns   INTEGER NOT NULL,
            updated_at      TEXT NOT NULL
        );
        """)

        # 3. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_image_cache_category ON image_cache(category);")

    logging.debug("Database schema initialized.")
