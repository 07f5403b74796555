from __future__ import annotations

import sqlite3
from collections.abc import Callable

from image_bundler.logger import get_logger

from ..metrics import metrics

_logger = get_logger("migrations")

# Migration function signature: (conn: sqlite3.Connection) -> None
MigrationFn = Callable[[sqlite3.Connection], None]

TABLE = "derivatives"


def _upgrade_to_1(conn: sqlite3.Connection) -> None:
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {TABLE} (
            path TEXT PRIMARY KEY,
            mtime_ms INTEGER NOT NULL,
            original_width INTEGER NOT NULL,
            original_height INTEGER NOT NULL,
            thumbnail BLOB NOT NULL,
            resized BLOB,
            created_at REAL NOT NULL DEFAULT 0
        )
    """)
    conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{TABLE}_mtime ON {TABLE}(mtime_ms)")
    conn.execute("PRAGMA user_version = 1")


MIGRATIONS_UPGRADE: dict[int, MigrationFn] = {1: _upgrade_to_1}


def get_latest_version() -> int:
    return max(MIGRATIONS_UPGRADE.keys()) if MIGRATIONS_UPGRADE else 0


def get_user_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def apply_migrations(conn: sqlite3.Connection) -> int:
    """Bring the DB to the latest user_version; returns the resulting version.

    A DB newer than this code is left alone (and logged); the columns this
    code reads have never been removed by a later schema.
    """
    current = get_user_version(conn)
    latest = get_latest_version()

    if current > latest:
        _logger.warning("derivative DB schema v%d is newer than supported v%d", current, latest)
        return current

    for v in range(current + 1, latest + 1):
        fn = MIGRATIONS_UPGRADE.get(v)
        if fn:
            with metrics.timed(f"migrations.apply_v{v}_duration"):
                fn(conn)
            metrics.inc(f"migrations.applied_v{v}")
            _logger.debug("applied derivative DB migration v%d", v)
    return latest
