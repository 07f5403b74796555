"""ImageSession: the facade callers (CLI or a GUI shell) talk to.

Owns the derivative store, builder, working set and build queue, and wires
them together. `start()` runs the staleness reconciler to completion before
the working set accepts files.

Usage:
    session = ImageSession.from_settings(SettingsManager())
    session.build_completed.connect(on_built, Qt.ConnectionType.DirectConnection)
    session.build_failed.connect(on_failed, Qt.ConnectionType.DirectConnection)
    session.start()
    handle = session.add_to_working_set("/photos/a.jpg")
    session.wait_idle()
    session.export_archive("/tmp/photos.zip")
    session.close()
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterable
from pathlib import Path

from PySide6.QtCore import QObject, Qt, Signal

from image_bundler.logger import get_logger
from image_bundler.path_utils import collect_image_files
from image_bundler.settings_manager import SettingsManager

from .archive import ProgressFn, write_archive
from .build_worker import BuildQueue
from .builder import RESIZE_BOX, THUMBNAIL_BOX, DerivativeBuilder
from .db.derivative_store import DerivativeStore
from .errors import DuplicateNameConflict, UnsupportedFormat
from .fs_iface import FileSystem, ImageCodec
from .models import Derivative, ImageHandle
from .reconciler import ReconcileReport, StalenessReconciler
from .working_set import WorkingSet

_logger = get_logger("engine")


class ImageSession(QObject):
    build_completed = Signal(object)  # ImageHandle
    build_failed = Signal(object, str)  # ImageHandle, reason

    def __init__(
        self,
        db_path: str | Path,
        codec: ImageCodec | None = None,
        fs: FileSystem | None = None,
        thumbnail_box: tuple[int, int] = THUMBNAIL_BOX,
        resize_box: tuple[int, int] = RESIZE_BOX,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.store = DerivativeStore(db_path)
        self.builder = DerivativeBuilder(
            self.store, codec=codec, fs=fs, thumbnail_box=thumbnail_box, resize_box=resize_box
        )
        self.working_set = WorkingSet(self)
        self.queue = BuildQueue(self.builder, self.working_set, self)
        # The queue emits from its worker thread; forward without needing an event loop.
        self.queue.build_completed.connect(self.build_completed, Qt.ConnectionType.DirectConnection)
        self.queue.build_failed.connect(self.build_failed, Qt.ConnectionType.DirectConnection)
        self._started = False
        self.last_report: ReconcileReport | None = None

    @classmethod
    def from_settings(cls, settings: SettingsManager, **kwargs) -> ImageSession:
        return cls(
            settings.db_path,
            thumbnail_box=settings.thumbnail_box,
            resize_box=settings.resize_box,
            **kwargs,
        )

    # ---- lifecycle -----------------------------------------------------
    def start(self) -> ReconcileReport:
        """Reconcile the store with the disk, then start the build worker."""
        if self._started:
            return self.last_report or ReconcileReport()
        self.last_report = StalenessReconciler(self.builder).run()
        self.queue.start()
        self._started = True
        return self.last_report

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self.queue.wait_idle(timeout)

    def close(self) -> None:
        with contextlib.suppress(RuntimeError):
            self.queue.stop()
        self.store.close()
        self._started = False

    def _require_started(self) -> None:
        if not self._started:
            raise RuntimeError("ImageSession.start() must run before files are added")

    # ---- working set ---------------------------------------------------
    def add_to_working_set(self, path: str | Path, display_name: str | None = None) -> ImageHandle:
        """Add one file and queue its thumbnail build."""
        self._require_started()
        handle = self.working_set.add(path, display_name)
        self.queue.enqueue(handle)
        return handle

    def add_paths(self, paths: Iterable[str | Path]) -> list[ImageHandle]:
        """Add files and (one level of) directory contents; name clashes are skipped."""
        added: list[ImageHandle] = []
        for p in collect_image_files(paths):
            try:
                added.append(self.add_to_working_set(p))
            except (DuplicateNameConflict, UnsupportedFormat) as exc:
                _logger.warning("skipped %s: %s", p, exc)
        return added

    def handles(self) -> list[ImageHandle]:
        return self.working_set.handles()

    def rename(self, handle: ImageHandle, new_name: str) -> None:
        self.working_set.rename(handle, new_name)

    def remove(self, handle: ImageHandle) -> bool:
        return self.working_set.remove(handle)

    def sort(self) -> None:
        self.working_set.sort()

    # ---- derivatives ---------------------------------------------------
    def thumbnail(self, handle: ImageHandle) -> Derivative:
        return self.builder.build_thumbnail(handle.path)

    def get_rotated_image(self, handle: ImageHandle) -> Derivative:
        return self.builder.get_rotated_image(handle)

    def original_dimensions(self, handle: ImageHandle) -> tuple[int, int]:
        return self.builder.original_dimensions(handle.path)

    def rotate(self, handle: ImageHandle, degrees: int) -> bool:
        changed = self.builder.rotate(handle, degrees)
        if changed:
            self.working_set.handle_changed.emit(handle)
        return changed

    def rotate_left(self, handle: ImageHandle) -> int:
        degrees = self.builder.rotate_left(handle)
        self.working_set.handle_changed.emit(handle)
        return degrees

    def rotate_right(self, handle: ImageHandle) -> int:
        degrees = self.builder.rotate_right(handle)
        self.working_set.handle_changed.emit(handle)
        return degrees

    # ---- export --------------------------------------------------------
    def export_archive(self, zip_path: str | Path, progress: ProgressFn | None = None) -> Path:
        return write_archive(
            zip_path,
            self.working_set.handles(),
            self.builder.get_rotated_image,
            self.builder.codec,
            progress=progress,
        )
