"""DerivativeStore: persistent thumbnails and resized images keyed by path.

All statements run on the owned (or injected) `DbOperator`, which serializes
them on one worker thread and commits each write as a single transaction.
The store holds bytes and plain metadata only; decoding is the builder's job.
"""

from __future__ import annotations

import contextlib
import sqlite3
import time
from pathlib import Path

from image_bundler.logger import get_logger
from image_bundler.path_utils import db_key

from ..errors import NotFound, StoreIOFailure
from ..metrics import metrics
from ..models import CacheEntry
from .db_operator import DbOperator
from .migrations import TABLE, apply_migrations

_logger = get_logger("derivative_store")

_COLUMNS = "path, mtime_ms, original_width, original_height, thumbnail, resized, created_at"

IDX_PATH = 0
IDX_MTIME = 1
IDX_WIDTH = 2
IDX_HEIGHT = 3
IDX_THUMBNAIL = 4
IDX_RESIZED = 5
IDX_CREATED_AT = 6


def cast_row(row) -> CacheEntry:
    return CacheEntry(
        path=str(row[IDX_PATH]),
        mtime_ms=int(row[IDX_MTIME]),
        original_width=int(row[IDX_WIDTH]),
        original_height=int(row[IDX_HEIGHT]),
        thumbnail=None if row[IDX_THUMBNAIL] is None else bytes(row[IDX_THUMBNAIL]),
        resized=None if row[IDX_RESIZED] is None else bytes(row[IDX_RESIZED]),
        created_at=0.0 if row[IDX_CREATED_AT] is None else float(row[IDX_CREATED_AT]),
    )


class DerivativeStore:
    """Upsert/get/delete access to the `derivatives` table.

    Usage:
        with DerivativeStore(db_path) as store:
            store.put(CacheEntry(path, mtime_ms, w, h, thumbnail=png))
            entry = store.get(path)
    """

    def __init__(self, db_path: Path | str, operator: DbOperator | None = None):
        self._db_path = Path(db_path)
        self._operator_owned = False
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreIOFailure(f"cannot create store directory {self._db_path.parent}: {exc}") from exc
        if operator is None:
            operator = DbOperator(self._db_path)
            self._operator_owned = True
        self._operator: DbOperator | None = operator
        version = self._operator.run_write(apply_migrations)
        _logger.debug("derivative store ready: %s (schema v%d)", self._db_path, version)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def operator(self) -> DbOperator:
        if self._operator is None:
            raise StoreIOFailure(f"derivative store {self._db_path} is closed")
        return self._operator

    # ---- reads ---------------------------------------------------------
    def get(self, path: str | Path) -> CacheEntry | None:
        key = db_key(path)

        def _do(conn: sqlite3.Connection):
            row = conn.execute(f"SELECT {_COLUMNS} FROM {TABLE} WHERE path = ?", (key,)).fetchone()
            return cast_row(row) if row else None

        return self.operator.run_read(_do)

    def exists(self, path: str | Path) -> bool:
        key = db_key(path)

        def _do(conn: sqlite3.Connection):
            return conn.execute(f"SELECT 1 FROM {TABLE} WHERE path = ?", (key,)).fetchone() is not None

        return self.operator.run_read(_do)

    def has_resized(self, path: str | Path) -> bool:
        key = db_key(path)

        def _do(conn: sqlite3.Connection):
            row = conn.execute(f"SELECT resized IS NOT NULL FROM {TABLE} WHERE path = ?", (key,)).fetchone()
            return bool(row and row[0])

        return self.operator.run_read(_do)

    def dimensions(self, path: str | Path) -> tuple[int, int]:
        """Original (width, height) of the source; raises NotFound without an entry."""
        key = db_key(path)

        def _do(conn: sqlite3.Connection):
            return conn.execute(
                f"SELECT original_width, original_height FROM {TABLE} WHERE path = ?", (key,)
            ).fetchone()

        row = self.operator.run_read(_do)
        if row is None:
            raise NotFound(key)
        return int(row[0]), int(row[1])

    def paths(self) -> list[str]:
        """Snapshot of every key, in insertion-independent sorted order."""

        def _do(conn: sqlite3.Connection):
            return [str(r[0]) for r in conn.execute(f"SELECT path FROM {TABLE} ORDER BY path")]

        return self.operator.run_read(_do)

    def mtimes(self) -> list[tuple[str, int]]:
        def _do(conn: sqlite3.Connection):
            rows = conn.execute(f"SELECT path, mtime_ms FROM {TABLE} ORDER BY path").fetchall()
            return [(str(p), int(m)) for p, m in rows]

        return self.operator.run_read(_do)

    def __len__(self) -> int:
        return self.operator.run_read(lambda conn: int(conn.execute(f"SELECT count(*) FROM {TABLE}").fetchone()[0]))

    # ---- writes --------------------------------------------------------
    def put(self, entry: CacheEntry) -> None:
        """Insert `entry`, or overwrite the fields it carries on an existing row.

        `thumbnail`/`resized` set to None keep the stored blobs. Inserting an
        entry without a thumbnail fails with StoreIOFailure (column is NOT NULL).
        """
        key = db_key(entry.path)
        created_at = entry.created_at or time.time()

        def _do(conn: sqlite3.Connection):
            conn.execute(
                f"""
                INSERT INTO {TABLE} ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    mtime_ms = excluded.mtime_ms,
                    original_width = excluded.original_width,
                    original_height = excluded.original_height,
                    thumbnail = COALESCE(excluded.thumbnail, thumbnail),
                    resized = COALESCE(excluded.resized, resized),
                    created_at = excluded.created_at
                """,
                (
                    key,
                    int(entry.mtime_ms),
                    int(entry.original_width),
                    int(entry.original_height),
                    entry.thumbnail,
                    entry.resized,
                    float(created_at),
                ),
            )

        self.operator.run_write(_do)
        metrics.inc("derivative_store.put")
        _logger.debug(
            "put: path=%s thumb=%s resized=%s",
            key,
            "BLOB" if entry.thumbnail else "keep",
            "BLOB" if entry.resized else "keep",
        )

    def delete(self, path: str | Path) -> bool:
        """Remove the entry for `path`; returns whether a row was deleted."""
        key = db_key(path)

        def _do(conn: sqlite3.Connection):
            return conn.execute(f"DELETE FROM {TABLE} WHERE path = ?", (key,)).rowcount

        count = self.operator.run_write(_do)
        metrics.inc("derivative_store.delete")
        _logger.debug("delete: path=%s rows=%d", key, count)
        return bool(count)

    def vacuum(self) -> None:
        """Reclaim space after large deletions."""
        self.operator.run_write(lambda conn: conn.execute("VACUUM"))
        _logger.debug("database vacuumed")

    # ---- lifecycle -----------------------------------------------------
    def close(self) -> None:
        if self._operator is not None and self._operator_owned:
            with contextlib.suppress(RuntimeError):
                self._operator.shutdown()
        self._operator = None

    def __enter__(self) -> DerivativeStore:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - trivial
        self.close()
