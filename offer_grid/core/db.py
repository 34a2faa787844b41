"""
SQLite foundation for the persistent tabular store.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from . import config


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or config.DB_PATH)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    db_path = db_path or config.DB_PATH
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # Grid cells, one row per non-blank cell, values JSON encoded
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS cells (
                row_num INTEGER NOT NULL,
                col_num INTEGER NOT NULL,
                value TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (row_num, col_num)
            )
        ''')

        # Row-scoped key/value annotations (bundle index, grouping markers)
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS row_metadata (
                row_num INTEGER NOT NULL,
                key TEXT NOT NULL,
                value TEXT,
                PRIMARY KEY (row_num, key)
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_cells_col_row ON cells(col_num, row_num)')

        conn.commit()


def health_check(db_path: str = None) -> bool:
    """Check if database is accessible."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            return True
    except sqlite3.Error:
        return False
