"""WorkingSet: the user's in-memory collection of image handles.

Mutations (add/remove/rename/sort) and the per-build notification are
serialized by one lock. The build queue never holds its own lock while
calling in here, and nothing here calls back into the queue.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from pathlib import Path

from PySide6.QtCore import QObject, Signal

from image_bundler.logger import get_logger
from image_bundler.path_utils import db_key, is_supported_image

from .errors import DuplicateNameConflict, UnsupportedFormat
from .models import ImageHandle

_logger = get_logger("working_set")


class WorkingSet(QObject):
    # Signal contract: payloads are the ImageHandle objects themselves.
    handle_added = Signal(object)
    handle_removed = Signal(object, str)  # handle, reason ("" when removed by the user)
    handle_changed = Signal(object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._handles: list[ImageHandle] = []
        self._lock = threading.RLock()

    # ---- queries -------------------------------------------------------
    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __iter__(self) -> Iterator[ImageHandle]:
        return iter(self.handles())

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return any(h is handle for h in self._handles)

    def handles(self) -> list[ImageHandle]:
        """Snapshot in display order."""
        with self._lock:
            return list(self._handles)

    def has_name(self, name: str, exclude: ImageHandle | None = None) -> bool:
        with self._lock:
            return any(h.display_name == name and h is not exclude for h in self._handles)

    def find(self, path: str | Path) -> ImageHandle | None:
        key = db_key(path)
        with self._lock:
            return next((h for h in self._handles if h.path == key), None)

    # ---- mutations -----------------------------------------------------
    def add(self, path: str | Path, display_name: str | None = None) -> ImageHandle:
        """Create a handle for `path`; the display name must be unused."""
        if not is_supported_image(path):
            raise UnsupportedFormat(str(path))
        handle = ImageHandle(path, display_name)
        with self._lock:
            if self.has_name(handle.display_name):
                raise DuplicateNameConflict(handle.display_name)
            self._handles.append(handle)
        _logger.debug("added: %s as %s", handle.path, handle.display_name)
        self.handle_added.emit(handle)
        return handle

    def rename(self, handle: ImageHandle, new_name: str) -> None:
        new_name = (new_name or "").strip()
        if not new_name:
            raise ValueError("display name must not be empty")
        if not is_supported_image(new_name):
            raise UnsupportedFormat(new_name)
        with self._lock:
            if handle not in self:
                raise KeyError(handle.path)
            if self.has_name(new_name, exclude=handle):
                raise DuplicateNameConflict(new_name)
            handle.prefs.display_name = new_name
        _logger.debug("renamed: %s -> %s", handle.path, new_name)
        self.handle_changed.emit(handle)

    def remove(self, handle: ImageHandle, reason: str = "") -> bool:
        with self._lock:
            for i, h in enumerate(self._handles):
                if h is handle:
                    del self._handles[i]
                    break
            else:
                return False
        _logger.debug("removed: %s %s", handle.path, reason)
        self.handle_removed.emit(handle, reason)
        return True

    def discard_failed(self, handle: ImageHandle, reason: str) -> bool:
        """Drop a handle whose build failed; observers get the reason."""
        removed = self.remove(handle, reason or "build failed")
        if removed:
            _logger.warning("dropped %s from the working set: %s", handle.path, reason)
        return removed

    def notify_built(self, handle: ImageHandle) -> bool:
        """Announce that `handle`'s thumbnail is ready, if it is still present."""
        with self._lock:
            if handle not in self:
                return False
            self.handle_changed.emit(handle)
            return True

    def sort(self) -> None:
        with self._lock:
            self._handles.sort(key=lambda h: h.display_name)
