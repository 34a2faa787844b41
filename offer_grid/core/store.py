"""
Tabular store adapter.
Rectangular reads and writes over a 1-based grid plus row-scoped annotations.
"""

import json
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from . import config
from .db import get_db, init_db
from .numeric import is_blank

Grid = List[List[Any]]


class TabularStore(ABC):
    """Abstract interface for grid storage. Rows and columns are 1-based."""

    @abstractmethod
    def read_range(self, row: int, col: int, n_rows: int, n_cols: int) -> Grid:
        """Read a rectangle; blank cells come back as empty strings."""
        pass

    @abstractmethod
    def write_range(self, row: int, col: int, grid: Grid) -> None:
        """Write a rectangle starting at (row, col)."""
        pass

    @abstractmethod
    def get_row_metadata(self, row: int) -> Dict[str, Any]:
        """Return all annotations on a row."""
        pass

    @abstractmethod
    def set_row_metadata(self, row: int, key: str, value: Any) -> None:
        """Attach or replace one annotation on a row."""
        pass

    @abstractmethod
    def clear_row_metadata(self, start_row: int, end_row: int, key: Optional[str] = None) -> None:
        """Remove annotations (one key, or all) on an inclusive row range."""
        pass

    @abstractmethod
    def last_row(self) -> int:
        """Last row holding any non-blank cell, 0 when empty."""
        pass

    def flush(self) -> None:
        """Commit pending external writes. No-op for synchronous stores."""
        pass

    def get_cell(self, row: int, col: int) -> Any:
        return self.read_range(row, col, 1, 1)[0][0]

    def set_cell(self, row: int, col: int, value: Any) -> None:
        self.write_range(row, col, [[value]])


class InMemoryTabularStore(TabularStore):
    """Dictionary-backed store for tests and embedding hosts."""

    def __init__(self):
        self._cells: Dict[tuple, Any] = {}
        self._metadata: Dict[int, Dict[str, Any]] = {}
        self._pending: List[tuple] = []
        self._lock = threading.RLock()
        self.read_count = 0
        self.write_count = 0

    def read_range(self, row: int, col: int, n_rows: int, n_cols: int) -> Grid:
        with self._lock:
            self.read_count += 1
            return [
                [self._cells.get((r, c), "") for c in range(col, col + n_cols)]
                for r in range(row, row + n_rows)
            ]

    def write_range(self, row: int, col: int, grid: Grid) -> None:
        with self._lock:
            self.write_count += 1
            for r_offset, values in enumerate(grid):
                for c_offset, value in enumerate(values):
                    self._put(row + r_offset, col + c_offset, value)

    def stage_external_write(self, row: int, col: int, value: Any) -> None:
        """Queue a write that only lands on the next flush()."""
        with self._lock:
            self._pending.append((row, col, value))

    def flush(self) -> None:
        with self._lock:
            for row, col, value in self._pending:
                self._put(row, col, value)
            self._pending.clear()

    def _put(self, row: int, col: int, value: Any) -> None:
        if is_blank(value):
            self._cells.pop((row, col), None)
        else:
            self._cells[(row, col)] = value

    def get_row_metadata(self, row: int) -> Dict[str, Any]:
        with self._lock:
            return dict(self._metadata.get(row, {}))

    def set_row_metadata(self, row: int, key: str, value: Any) -> None:
        with self._lock:
            self._metadata.setdefault(row, {})[key] = value

    def clear_row_metadata(self, start_row: int, end_row: int, key: Optional[str] = None) -> None:
        with self._lock:
            for row in range(start_row, end_row + 1):
                if row not in self._metadata:
                    continue
                if key is None:
                    del self._metadata[row]
                else:
                    self._metadata[row].pop(key, None)
                    if not self._metadata[row]:
                        del self._metadata[row]

    def last_row(self) -> int:
        with self._lock:
            return max((r for r, _ in self._cells), default=0)

    def snapshot(self) -> Dict[tuple, Any]:
        """Copy of every non-blank cell, for comparisons in tests."""
        with self._lock:
            return dict(self._cells)


class SqliteTabularStore(TabularStore):
    """SQLite-backed store; cell values are JSON encoded."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or config.DB_PATH
        init_db(self.db_path)

    def read_range(self, row: int, col: int, n_rows: int, n_cols: int) -> Grid:
        grid = [["" for _ in range(n_cols)] for _ in range(n_rows)]
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT row_num, col_num, value FROM cells WHERE row_num BETWEEN ? AND ? AND col_num BETWEEN ? AND ?",
                (row, row + n_rows - 1, col, col + n_cols - 1)
            )
            for r, c, value in cursor.fetchall():
                grid[r - row][c - col] = json.loads(value)
        return grid

    def write_range(self, row: int, col: int, grid: Grid) -> None:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            for r_offset, values in enumerate(grid):
                for c_offset, value in enumerate(values):
                    r, c = row + r_offset, col + c_offset
                    if is_blank(value):
                        cursor.execute("DELETE FROM cells WHERE row_num = ? AND col_num = ?", (r, c))
                    else:
                        cursor.execute(
                            "INSERT OR REPLACE INTO cells (row_num, col_num, value, updated_at) VALUES (?, ?, ?, CURRENT_TIMESTAMP)",
                            (r, c, json.dumps(value))
                        )
            conn.commit()

    def get_row_metadata(self, row: int) -> Dict[str, Any]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT key, value FROM row_metadata WHERE row_num = ?", (row,))
            return {key: json.loads(value) for key, value in cursor.fetchall()}

    def set_row_metadata(self, row: int, key: str, value: Any) -> None:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT OR REPLACE INTO row_metadata (row_num, key, value) VALUES (?, ?, ?)",
                (row, key, json.dumps(value))
            )
            conn.commit()

    def clear_row_metadata(self, start_row: int, end_row: int, key: Optional[str] = None) -> None:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            if key is None:
                cursor.execute("DELETE FROM row_metadata WHERE row_num BETWEEN ? AND ?", (start_row, end_row))
            else:
                cursor.execute(
                    "DELETE FROM row_metadata WHERE row_num BETWEEN ? AND ? AND key = ?",
                    (start_row, end_row, key)
                )
            conn.commit()

    def last_row(self) -> int:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT MAX(row_num) FROM cells")
            result = cursor.fetchone()[0]
            return result or 0


def get_store() -> TabularStore:
    """Get the configured store implementation."""
    if config.STORE_BACKEND == "sqlite":
        return SqliteTabularStore()
    return InMemoryTabularStore()
