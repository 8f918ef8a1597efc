"""Helpers shared by the test modules."""

from __future__ import annotations

import os
import sqlite3
from datetime import datetime

# Wednesday, inside business hours
BUSINESS_HOURS = datetime(2026, 10, 14, 10, 30)
# Sunday night
QUIET_HOURS = datetime(2026, 10, 18, 23, 0)


def write_undo_script(directory: str, filename: str, body: str) -> str:
    """Write an undo script file and return its path."""
    path = os.path.join(directory, filename)
    with open(path, "w", encoding="utf-8") as f:
        f.write(body)
    return path


def count_rows(database: str, table: str) -> int:
    conn = sqlite3.connect(database)
    try:
        return conn.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0]
    finally:
        conn.close()


def _names(database: str, kind: str) -> set[str]:
    conn = sqlite3.connect(database)
    try:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = ?", (kind,)
        ).fetchall()
        return {row[0] for row in rows}
    finally:
        conn.close()


def table_names(database: str) -> set[str]:
    return _names(database, "table")


def index_names(database: str) -> set[str]:
    return _names(database, "index")
