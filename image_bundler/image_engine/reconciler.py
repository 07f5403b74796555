"""StalenessReconciler: one-shot startup pass aligning the store with the disk.

For each stored path:
- the source is gone          -> delete the entry
- the source is newer (mtime) -> regenerate its derivatives
- otherwise                   -> leave it alone

An entry that cannot be checked or rebuilt is logged and kept; deletion is
reserved for sources that are positively missing. Failing to enumerate the
store at all raises StoreIOFailure.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from image_bundler.logger import get_logger

from .builder import DerivativeBuilder
from .errors import SourceUnreadable, StoreIOFailure
from .fs_iface import FileSystem
from .metrics import metrics

_logger = get_logger("reconciler")


@dataclass
class ReconcileReport:
    checked: int = 0
    removed: list[str] = field(default_factory=list)
    refreshed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    elapsed: float = 0.0


class StalenessReconciler:
    def __init__(self, builder: DerivativeBuilder, fs: FileSystem | None = None) -> None:
        self._builder = builder
        self._store = builder.store
        self._fs = fs if fs is not None else builder.fs

    def run(self) -> ReconcileReport:
        report = ReconcileReport()
        start_ts = time.time()
        rows = self._store.mtimes()
        _logger.debug("reconcile start: entries=%d", len(rows))

        for path, stored_mtime in rows:
            report.checked += 1
            try:
                self._check_one(path, stored_mtime, report)
            except (SourceUnreadable, StoreIOFailure, OSError) as exc:
                report.failed[path] = str(exc)
                metrics.inc("reconciler.failed")
                _logger.warning("reconcile: left %s untouched (%s)", path, exc)

        report.elapsed = time.time() - start_ts
        _logger.info(
            "reconcile finished: checked=%d removed=%d refreshed=%d failed=%d elapsed=%.3fs",
            report.checked,
            len(report.removed),
            len(report.refreshed),
            len(report.failed),
            report.elapsed,
        )
        return report

    def _check_one(self, path: str, stored_mtime: int, report: ReconcileReport) -> None:
        if not self._fs.exists(path):
            self._store.delete(path)
            report.removed.append(path)
            metrics.inc("reconciler.removed")
            _logger.debug("reconcile: removed missing source %s", path)
            return

        current = self._fs.mtime_ms(path)
        if current > stored_mtime:
            self._builder.refresh(path)
            report.refreshed.append(path)
            metrics.inc("reconciler.refreshed")
            _logger.debug("reconcile: refreshed %s (%d > %d)", path, current, stored_mtime)
