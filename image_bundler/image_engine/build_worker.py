"""BuildQueue: FIFO of handles awaiting their thumbnail, drained by one worker.

Callers push handles with `enqueue()` from any thread. A single worker thread
(started with `start()`) sleeps on a wake event and calls `drain()`, which
takes items from the head until the queue is empty. `drain()` holds a drain
lock for its whole run, so a second caller blocks until the first finishes
instead of interleaving with it.

Per-item failures never stop the batch: a `SourceUnreadable` drops the handle
from the working set; every failure is reported through `build_failed`.
"""

from __future__ import annotations

import queue
import threading
import traceback

from PySide6.QtCore import QObject, Signal

from image_bundler.logger import get_logger

from .builder import DerivativeBuilder
from .errors import SourceUnreadable, StoreIOFailure
from .metrics import metrics
from .models import ImageHandle
from .working_set import WorkingSet

_logger = get_logger("build_worker")

STATE_IDLE = "idle"
STATE_DRAINING = "draining"


class BuildQueue(QObject):
    # Signal contract
    build_completed = Signal(object)  # ImageHandle
    build_failed = Signal(object, str)  # ImageHandle, reason
    state_changed = Signal(str)  # STATE_IDLE / STATE_DRAINING

    def __init__(
        self,
        builder: DerivativeBuilder,
        working_set: WorkingSet | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._builder = builder
        self._working_set = working_set
        self._pending: queue.Queue[ImageHandle] = queue.Queue()
        self._drain_lock = threading.Lock()
        self._wake = threading.Event()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        # Outstanding = enqueued but not yet processed; guarded by _idle.
        self._idle = threading.Condition()
        self._outstanding = 0
        self._state = STATE_IDLE

    @property
    def state(self) -> str:
        return self._state

    def pending(self) -> int:
        return self._pending.qsize()

    # ---- producer side -------------------------------------------------
    def enqueue(self, handle: ImageHandle) -> None:
        with self._idle:
            self._outstanding += 1
        self._pending.put(handle)
        self._wake.set()
        metrics.inc("build_worker.enqueued")

    # ---- consumer side -------------------------------------------------
    def drain(self) -> int:
        """Process queued handles in FIFO order until the queue is empty.

        Returns the number of handles taken off the queue.
        """
        processed = 0
        with self._drain_lock:
            self._set_state(STATE_DRAINING)
            try:
                while True:
                    try:
                        handle = self._pending.get_nowait()
                    except queue.Empty:
                        break
                    try:
                        self._process(handle)
                    finally:
                        processed += 1
                        self._mark_done()
            finally:
                self._set_state(STATE_IDLE)
        if processed:
            _logger.debug("drain finished: processed=%d", processed)
        return processed

    def _process(self, handle: ImageHandle) -> None:
        ws = self._working_set
        if ws is not None and handle not in ws:
            _logger.debug("skip build for removed handle: %s", handle.path)
            return
        try:
            self._builder.build_thumbnail(handle.path)
        except SourceUnreadable as exc:
            metrics.inc("build_worker.failed")
            if ws is not None:
                ws.discard_failed(handle, exc.reason)
            self.build_failed.emit(handle, f"Unable to read {exc.path}: {exc.reason}")
            return
        except StoreIOFailure as exc:
            metrics.inc("build_worker.failed")
            _logger.error("store failure while building %s: %s", handle.path, exc)
            self.build_failed.emit(handle, f"Cache unavailable: {exc}")
            return
        except Exception as exc:
            metrics.inc("build_worker.failed")
            _logger.error("unexpected build error for %s\n%s", handle.path, traceback.format_exc())
            self.build_failed.emit(handle, f"Unexpected error: {exc}")
            return

        metrics.inc("build_worker.completed")
        if ws is not None:
            ws.notify_built(handle)
        self.build_completed.emit(handle)

    def _mark_done(self) -> None:
        with self._idle:
            self._outstanding -= 1
            if self._outstanding <= 0:
                self._outstanding = 0
                self._idle.notify_all()

    def _set_state(self, state: str) -> None:
        if state != self._state:
            self._state = state
            self.state_changed.emit(state)

    # ---- worker thread -------------------------------------------------
    def start(self) -> None:
        """Start the single background worker (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="build-worker", daemon=True)
        self._thread.start()
        _logger.debug("build worker started")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if not self._wake.wait(timeout=0.1):
                continue
            self._wake.clear()
            self.drain()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every enqueued handle has been processed."""
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    def stop(self, wait: bool = True) -> None:
        self._stop_event.set()
        self._wake.set()
        if wait and self._thread is not None:
            self._thread.join(timeout=5)
        self._thread = None
