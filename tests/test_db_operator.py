import sqlite3
import threading
import time
from pathlib import Path

import pytest

from image_bundler.image_engine.db.db_operator import DbOperator
from image_bundler.image_engine.errors import StoreIOFailure


def _create_db(db_path: Path) -> None:
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE IF NOT EXISTS t (id INTEGER PRIMARY KEY, value INTEGER)")
    conn.commit()
    conn.close()


def _count_rows(conn):
    cur = conn.execute("SELECT count(*) FROM t")
    return int(cur.fetchone()[0])


def test_db_operator_basic_write_and_read(tmp_path: Path):
    db_path = tmp_path / "test.db"
    _create_db(db_path)
    op = DbOperator(db_path)

    def insert(conn, v):
        conn.execute("INSERT INTO t (value) VALUES (?)", (v,))
        return v

    futures = [op.schedule_write(insert, i) for i in range(5)]
    results = [f.result(timeout=2) for f in futures]
    assert results == [0, 1, 2, 3, 4]

    fut = op.schedule_read(_count_rows)
    assert fut.result(timeout=2) == 5

    op.shutdown()


def test_db_operator_retry_on_operational_error(tmp_path: Path):
    db_path = tmp_path / "retry.db"
    _create_db(db_path)
    op = DbOperator(db_path)

    # Fails the first time with OperationalError, then succeeds
    calls = {"count": 0}

    def flaky_insert(conn):
        calls["count"] += 1
        if calls["count"] == 1:
            raise sqlite3.OperationalError("database is locked")
        conn.execute("INSERT INTO t (value) VALUES (?)", (123,))
        return 123

    fut = op.schedule_write(flaky_insert, retries=3)
    assert fut.result(timeout=5) == 123
    assert op.run_read(_count_rows) == 1
    op.shutdown()


def test_db_operator_gives_up_with_store_io_failure(tmp_path: Path):
    db_path = tmp_path / "locked.db"
    _create_db(db_path)
    op = DbOperator(db_path)
    calls = {"count": 0}

    def always_locked(conn):
        calls["count"] += 1
        raise sqlite3.OperationalError("database is locked")

    with pytest.raises(StoreIOFailure):
        op.run_write(always_locked, retries=2)
    # first attempt plus two retries
    assert calls["count"] == 3
    op.shutdown()


def test_db_operator_rolls_back_failed_write(tmp_path: Path):
    db_path = tmp_path / "rollback.db"
    _create_db(db_path)
    op = DbOperator(db_path)

    def half_insert(conn):
        conn.execute("INSERT INTO t (value) VALUES (1)")
        conn.execute("INSERT INTO t (id, value) VALUES (1, 2)")  # primary key clash

    with pytest.raises(StoreIOFailure):
        op.run_write(half_insert)
    assert op.run_read(_count_rows) == 0
    op.shutdown()


def test_db_operator_passes_through_non_sqlite_errors(tmp_path: Path):
    db_path = tmp_path / "plain.db"
    _create_db(db_path)
    op = DbOperator(db_path)

    def boom(conn):
        raise KeyError("not a db problem")

    with pytest.raises(KeyError):
        op.run_write(boom)
    op.shutdown()


def test_db_operator_serializes_tasks(tmp_path: Path):
    db_path = tmp_path / "serial.db"
    _create_db(db_path)
    op = DbOperator(db_path)
    active = {"now": 0, "max": 0}
    lock = threading.Lock()

    def slow(conn):
        with lock:
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
        time.sleep(0.01)
        with lock:
            active["now"] -= 1

    futures = [op.schedule_write(slow) for _ in range(10)]
    for f in futures:
        f.result(timeout=5)
    assert active["max"] == 1
    op.shutdown()


def test_db_operator_rejects_work_after_shutdown(tmp_path: Path):
    db_path = tmp_path / "closed.db"
    _create_db(db_path)
    op = DbOperator(db_path)
    op.shutdown()
    assert not op.is_alive()
    with pytest.raises(StoreIOFailure):
        op.schedule_read(_count_rows)
