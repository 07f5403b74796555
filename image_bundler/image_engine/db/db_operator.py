from __future__ import annotations

import contextlib
import queue
import sqlite3
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from image_bundler.logger import get_logger

from ..errors import StoreIOFailure
from ..metrics import metrics

_logger = get_logger("db_operator")


@dataclass
class _DbTask:
    fn: Callable[..., Any]
    args: tuple
    kwargs: dict
    future: Future
    retries: int = 3
    write: bool = True


class DbOperator:
    """Serialized DB operation queue / worker.

    Owns a worker thread that executes queued tasks one at a time, each on a
    fresh sqlite3 connection inside its own transaction. Write tasks commit on
    success and roll back on failure, so a task's changes are all-or-nothing.
    Transient `sqlite3.OperationalError` is retried with a linear backoff;
    anything `sqlite3` raises after the retries is surfaced as
    `StoreIOFailure` through the task's future.
    """

    def __init__(self, db_path: Path | str, busy_timeout_ms: int = 5000):
        self._db_path = Path(db_path)
        self._queue: queue.Queue[_DbTask] = queue.Queue()
        self._stop_event = threading.Event()
        self._busy_timeout_ms = int(busy_timeout_ms)
        self._thread = threading.Thread(target=self._worker, name="db-operator", daemon=True)
        self._thread.start()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _open_conn(self) -> sqlite3.Connection:
        # Fresh connection per task to avoid long locks/held file handles.
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.DatabaseError:
            _logger.debug("PRAGMA journal_mode=WAL failed", exc_info=True)
        conn.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout_ms)}")
        return conn

    def _submit(self, task: _DbTask) -> Future:
        if self._stop_event.is_set():
            raise StoreIOFailure(f"db operator for {self._db_path} is shut down")
        self._queue.put(task)
        return task.future

    def schedule_write(self, fn: Callable[..., Any], *args, retries: int = 3, **kwargs) -> Future:
        fut: Future = Future()
        metrics.inc("db_operator.write_queued")
        return self._submit(_DbTask(fn=fn, args=args, kwargs=kwargs, future=fut, retries=retries))

    def schedule_read(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        # Reads are serialized as well to keep a single-writer/single-reader model.
        fut: Future = Future()
        metrics.inc("db_operator.read_queued")
        return self._submit(_DbTask(fn=fn, args=args, kwargs=kwargs, future=fut, retries=1, write=False))

    def run_write(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Schedule a write and block for its result."""
        return self.schedule_write(fn, *args, **kwargs).result()

    def run_read(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Schedule a read and block for its result."""
        return self.schedule_read(fn, *args, **kwargs).result()

    def _execute(self, task: _DbTask) -> None:
        attempt = 0
        while True:
            conn = None
            try:
                with metrics.timed("db_operator.task_duration"):
                    conn = self._open_conn()
                    res = task.fn(conn, *task.args, **task.kwargs)
                    if task.write:
                        conn.commit()
                task.future.set_result(res)
                return
            except sqlite3.OperationalError as exc:
                if conn is not None:
                    with contextlib.suppress(sqlite3.Error):
                        conn.rollback()
                attempt += 1
                metrics.inc("db_operator.retries")
                if attempt > (task.retries or 0):
                    _logger.warning("db task failed after %d attempts: %s", attempt, exc)
                    task.future.set_exception(StoreIOFailure(str(exc)))
                    return
                time.sleep(0.05 * attempt)
            except sqlite3.Error as exc:
                if conn is not None:
                    with contextlib.suppress(sqlite3.Error):
                        conn.rollback()
                _logger.debug("db task failed: %s", exc)
                task.future.set_exception(StoreIOFailure(str(exc)))
                return
            except Exception as exc:
                if conn is not None:
                    with contextlib.suppress(sqlite3.Error):
                        conn.rollback()
                task.future.set_exception(exc)
                return
            finally:
                if conn is not None:
                    with contextlib.suppress(sqlite3.Error):
                        conn.close()

    def _worker(self) -> None:
        while not self._stop_event.is_set() or not self._queue.empty():
            try:
                task = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._execute(task)
            finally:
                self._queue.task_done()

    def shutdown(self, wait: bool = True) -> None:
        self._stop_event.set()
        if wait:
            self._thread.join(timeout=5)

    def is_alive(self) -> bool:
        return self._thread.is_alive()
